import pytest

from cotizaciones.enums import Bucket
from cotizaciones.projection import filter_by_bucket, group_by_bucket, parse_bucket, pending, project


@pytest.mark.parametrize(
    "estado, workflow, progress, color, bucket",
    [
        ("ganada", None, 100, "green-darken-2", Bucket.WON),
        ("ganada", "cotizado", 100, "green-darken-2", Bucket.WON),
        ("perdida", "en_revision", 100, "red-darken-2", Bucket.LOST),
        ("pendiente", "cotizado", 80, "blue-darken-2", Bucket.QUOTED),
        ("reabierta", "cotizado", 80, "blue-darken-2", Bucket.QUOTED),
        ("pendiente", "espera_cliente", 60, "lime-darken-2", Bucket.UNREVIEWED),
        ("pendiente", "consultando", 40, "yellow-darken-2", Bucket.UNREVIEWED),
        ("pendiente", "en_revision", 20, "amber-darken-2", Bucket.UNREVIEWED),
        ("reabierta", None, 0, "amber-darken-2", Bucket.REOPENED),
        ("pendiente", None, 0, "amber-darken-2", Bucket.UNREVIEWED),
        (None, None, 0, "amber-darken-2", Bucket.UNREVIEWED),
    ],
)
def test_projection_table(estado, workflow, progress, color, bucket):
    view = project({"estado": estado, "workflow": workflow})

    assert view.progress == progress
    assert view.color_tag == color
    assert view.bucket == bucket
    assert view.hide_pending is (progress == 100)


def test_axes_are_case_insensitive():
    assert project({"estado": "GANADA"}).bucket == Bucket.WON
    assert project({"estado": "Pendiente", "workflow": " Cotizado "}).progress == 80


def test_unknown_values_fall_back_to_defaults():
    view = project({"estado": "archivada", "workflow": "otra"})
    assert (view.progress, view.color_tag, view.bucket) == (0, "amber-darken-2", Bucket.UNREVIEWED)


def test_projection_does_not_touch_the_record():
    record = {"estado": "pendiente", "workflow": "cotizado"}
    project(record)
    project(record)
    assert record == {"estado": "pendiente", "workflow": "cotizado"}


def test_rejects_unsupported_inputs():
    with pytest.raises(TypeError):
        project(42)


def test_grouping_helpers():
    records = [
        {"estado": "ganada"},
        {"estado": "reabierta"},
        {"estado": "pendiente"},
        {"estado": "pendiente", "workflow": "cotizado"},
    ]

    groups = group_by_bucket(records)
    assert [len(groups[bucket]) for bucket in Bucket] == [1, 0, 1, 1, 1]
    assert pending(records) == [records[1], records[2]]
    assert filter_by_bucket(records, Bucket.QUOTED) == [records[3]]


def test_parse_bucket():
    assert parse_bucket(None) is None
    assert parse_bucket("quoted") == Bucket.QUOTED
    with pytest.raises(ValueError):
        parse_bucket("archivadas")
