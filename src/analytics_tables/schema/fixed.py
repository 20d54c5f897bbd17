"""Columns present in every table of a given type, whatever the metadata."""
from __future__ import annotations
from typing import Tuple

from analytics_tables.core.types import Column, DataType, IndexHint
from analytics_tables.sql.builder import SqlBuilder

PERIOD_COLUMNS = ("daily", "weekly", "monthly", "quarterly", "yearly")


def _col(name, data_type, expression, nullable=True, **kw) -> Column:
    return Column(
        name=name,
        data_type=data_type,
        select_expression=expression,
        nullable=nullable,
        **kw,
    )


def _geometry(name, expression) -> Column:
    return _col(
        name,
        DataType.GEOMETRY,
        expression,
        index_hint=IndexHint.SPATIAL,
        requires_spatial=True,
    )


def event_fixed_columns(builder: SqlBuilder) -> Tuple[Column, ...]:
    b = builder
    return (
        _col("psi", DataType.CHARACTER_11, "psi.uid", nullable=False),
        _col("pi", DataType.CHARACTER_11, "pi.uid", nullable=False),
        _col("ps", DataType.CHARACTER_11, "ps.uid", nullable=False),
        _col("ao", DataType.CHARACTER_11, "ao.uid", nullable=False),
        _col("enrollmentdate", DataType.TIMESTAMP, "pi.enrollmentdate"),
        _col("incidentdate", DataType.TIMESTAMP, "pi.occurreddate"),
        _col("occurreddate", DataType.TIMESTAMP, "psi.occurreddate"),
        _col("scheduleddate", DataType.TIMESTAMP, "psi.scheduleddate"),
        _col("completeddate", DataType.TIMESTAMP, "psi.completeddate"),
        # client side timestamps win over server side ones when present
        _col(
            "created",
            DataType.TIMESTAMP,
            b.first_if_not_null("psi.createdatclient", "psi.created"),
        ),
        _col(
            "lastupdated",
            DataType.TIMESTAMP,
            b.first_if_not_null("psi.lastupdatedatclient", "psi.lastupdated"),
        ),
        _col("storedby", DataType.VARCHAR_255, "psi.storedby"),
        _col(
            "createdbyusername",
            DataType.VARCHAR_255,
            b.json_extract("psi.createdbyuserinfo", "username"),
        ),
        _col(
            "createdbyname",
            DataType.VARCHAR_255,
            b.json_extract("psi.createdbyuserinfo", "firstName"),
        ),
        _col(
            "createdbylastname",
            DataType.VARCHAR_255,
            b.json_extract("psi.createdbyuserinfo", "surname"),
        ),
        _col(
            "createdbydisplayname",
            DataType.VARCHAR_255,
            b.display_name("psi.createdbyuserinfo"),
        ),
        _col(
            "lastupdatedbyusername",
            DataType.VARCHAR_255,
            b.json_extract("psi.lastupdatedbyuserinfo", "username"),
        ),
        _col(
            "lastupdatedbyname",
            DataType.VARCHAR_255,
            b.json_extract("psi.lastupdatedbyuserinfo", "firstName"),
        ),
        _col(
            "lastupdatedbylastname",
            DataType.VARCHAR_255,
            b.json_extract("psi.lastupdatedbyuserinfo", "surname"),
        ),
        _col(
            "lastupdatedbydisplayname",
            DataType.VARCHAR_255,
            b.display_name("psi.lastupdatedbyuserinfo"),
        ),
        _col("psistatus", DataType.VARCHAR_50, "psi.status"),
        _col("pistatus", DataType.VARCHAR_50, "pi.status"),
        _geometry("psigeometry", "psi.geometry"),
        _col(
            "longitude",
            DataType.DOUBLE,
            b.point_x("psi.geometry"),
            requires_spatial=True,
        ),
        _col(
            "latitude",
            DataType.DOUBLE,
            b.point_y("psi.geometry"),
            requires_spatial=True,
        ),
        _col("ou", DataType.CHARACTER_11, "ou.uid", nullable=False),
        _col("ouname", DataType.TEXT, "ou.name", nullable=False),
        _col("oucode", DataType.TEXT, "ou.code"),
        _col("oulevel", DataType.INTEGER, "ous.level"),
        _geometry("ougeometry", "ou.geometry"),
        _geometry("pigeometry", "pi.geometry"),
        _col(
            "registrationou",
            DataType.CHARACTER_11,
            "coalesce(registrationou.uid,ou.uid)",
            nullable=False,
        ),
        _col(
            "enrollmentou",
            DataType.CHARACTER_11,
            "coalesce(enrollmentou.uid,ou.uid)",
            nullable=False,
        ),
    )


def event_period_columns() -> Tuple[Column, ...]:
    return tuple(
        _col(name, DataType.TEXT, f'dps."{name}"') for name in PERIOD_COLUMNS
    )


def event_registration_columns() -> Tuple[Column, ...]:
    return (
        _col("tei", DataType.CHARACTER_11, "tei.uid"),
        _geometry("teigeometry", "tei.geometry"),
    )


def enrollment_fixed_columns(builder: SqlBuilder) -> Tuple[Column, ...]:
    b = builder
    return (
        _col("trackedentityinstanceuid", DataType.CHARACTER_11, "tei.uid", nullable=False),
        _col("programuid", DataType.CHARACTER_11, "p.uid"),
        _col("programinstanceuid", DataType.CHARACTER_11, "pi.uid", nullable=False),
        _col("enrollmentdate", DataType.TIMESTAMP, "pi.enrollmentdate"),
        _col("enddate", DataType.TIMESTAMP, "pi.completeddate"),
        _col("incidentdate", DataType.TIMESTAMP, "pi.occurreddate"),
        _col(
            "created",
            DataType.TIMESTAMP,
            b.first_if_not_null("pi.createdatclient", "pi.created"),
        ),
        _col(
            "lastupdated",
            DataType.TIMESTAMP,
            b.first_if_not_null("pi.lastupdatedatclient", "pi.lastupdated"),
        ),
        _col("enrollmentstatus", DataType.VARCHAR_50, "pi.status"),
        _geometry("pigeometry", "pi.geometry"),
        _col(
            "pilongitude", DataType.DOUBLE, b.point_x("pi.geometry"), requires_spatial=True
        ),
        _col(
            "pilatitude", DataType.DOUBLE, b.point_y("pi.geometry"), requires_spatial=True
        ),
        _col("ou", DataType.CHARACTER_11, "ou.uid"),
        _col("ouname", DataType.VARCHAR_255, "ou.name"),
        _col("oucode", DataType.CHARACTER_32, "ou.code"),
        _col("oulevel", DataType.INTEGER, "ous.level"),
        _col("yearly", DataType.TEXT, 'dps."yearly"'),
    )
