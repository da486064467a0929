# Copyright (c) 2025 massivedatascience
# Licensed under the Apache License, Version 2.0

"""
Sequence-file storage for points, canopies and cluster assignments.

Every value is a wire-codec payload:

- points: ``(point_id, vector record)``
- canopies: ``(canopy_id, vector record + preference record)`` where the
  vector is the centroid and the preference pair is ``(canopy_id, mass)``
- assignments: ``(point_id, preference record)`` holding
  ``(canopy_id, distance)``
"""

from typing import Iterable, Iterator, List, Sequence, Tuple

from py4j.protocol import Py4JJavaError
from pyspark import RDD, SparkContext

from .canopy import Canopy
from .codec import PreferenceRecord, VectorRecord, decode, encode, iter_records
from .errors import MalformedRecord, SnapshotFailure
from .vectors import as_sparse_vector


def encode_canopy(canopy: Canopy) -> bytearray:
    return bytearray(
        encode(VectorRecord(canopy.centroid))
        + encode(PreferenceRecord(canopy.canopy_id, canopy.mass))
    )


def decode_canopy(canopy_id: int, payload, t1: float, t2: float) -> Canopy:
    records = list(iter_records(payload))
    if (
        len(records) != 2
        or not isinstance(records[0], VectorRecord)
        or not isinstance(records[1], PreferenceRecord)
    ):
        raise MalformedRecord(f"Canopy {canopy_id} payload is not a centroid followed by a mass")
    if records[1].user_id != canopy_id:
        raise MalformedRecord(f"Canopy payload for id {records[1].user_id} stored under key {canopy_id}")
    return Canopy(canopy_id, records[0].vector, t1, t2, mass=records[1].value)


def canopy_records(canopies: Iterable[Canopy]) -> List[Tuple[int, bytearray]]:
    return [(canopy.canopy_id, encode_canopy(canopy)) for canopy in canopies]


def canopies_from_records(records: Iterable[Tuple[int, bytes]], t1: float, t2: float) -> List[Canopy]:
    canopies = [decode_canopy(int(key), payload, t1, t2) for key, payload in records]
    return sorted(canopies, key=lambda canopy: canopy.canopy_id)


def save_canopies(sc: SparkContext, canopies: Iterable[Canopy], path: str):
    try:
        sc.parallelize(canopy_records(canopies), 1).saveAsSequenceFile(path)
    except Py4JJavaError as e:
        raise SnapshotFailure(f"Could not write canopies to {path}", path) from e


def load_canopies(sc: SparkContext, path: str, t1: float, t2: float) -> List[Canopy]:
    return canopies_from_records(sc.sequenceFile(path).collect(), t1, t2)


def save_points(points: RDD, path: str):
    """Write ``(point_id, vector)`` pairs."""
    points.map(
        lambda kv: (kv[0], bytearray(encode(VectorRecord(as_sparse_vector(kv[1])))))
    ).saveAsSequenceFile(path)


def _decode_point(kv) -> Iterator:
    record = decode(kv[1])
    if not isinstance(record, VectorRecord):
        raise MalformedRecord(f"Point {kv[0]} is not a vector record")
    yield kv[0], record.vector


def load_points(sc: SparkContext, path: str) -> RDD:
    return sc.sequenceFile(path).flatMap(_decode_point)


def save_assignments(assignments: RDD, path: str):
    """Write ``(point_id, (canopy_id, distance))`` pairs."""
    try:
        assignments.map(
            lambda kv: (kv[0], bytearray(encode(PreferenceRecord(kv[1][0], kv[1][1]))))
        ).saveAsSequenceFile(path)
    except Py4JJavaError as e:
        raise SnapshotFailure(f"Could not write assignments to {path}", path) from e


def _decode_assignment(kv) -> Iterator:
    record = decode(kv[1])
    if not isinstance(record, PreferenceRecord):
        raise MalformedRecord(f"Assignment for point {kv[0]} is not a preference record")
    yield kv[0], (record.user_id, record.value)


def load_assignments(sc: SparkContext, path: str) -> RDD:
    return sc.sequenceFile(path).flatMap(_decode_assignment)


def clear_outputs(sc: SparkContext, directory: str, patterns: Sequence[str]) -> int:
    """
    Delete the entries of ``directory`` matching the Hadoop glob ``patterns``.

    Works on any filesystem the context's Hadoop configuration can reach.
    Returns the number of paths deleted.
    """
    jvm = sc._jvm
    conf = sc._jsc.hadoopConfiguration()
    deleted = 0
    for pattern in patterns:
        glob = jvm.org.apache.hadoop.fs.Path(directory, pattern)
        fs = glob.getFileSystem(conf)
        for status in fs.globStatus(glob) or []:
            if fs.delete(status.getPath(), True):
                deleted += 1
    return deleted
