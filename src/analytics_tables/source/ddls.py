"""
Source schema for a DuckDB installation: the transactional tables the
analytics tables are built from plus the resource tables they join to.

Resource tables are shaped by the metadata catalog (one column per org unit
level, group set and category).
"""
from __future__ import annotations
from datetime import datetime
from typing import List, Optional

import structlog

from analytics_tables.core.calendar import Calendar, get_calendar
from analytics_tables.core.time import to_long_date
from analytics_tables.metadata.catalog import MetadataCatalog
from analytics_tables.sql.builder import quote_ident
from analytics_tables.store.watermarks import LAST_RESOURCE_TABLES_UPDATE

log = structlog.get_logger(mod="source.ddls")

SOURCE_DDLS = [
    """
    create table if not exists program (
      programid integer primary key,
      uid varchar(11) not null,
      name varchar
    )""",
    """
    create table if not exists programstage (
      programstageid integer primary key,
      uid varchar(11) not null,
      programid integer
    )""",
    """
    create table if not exists categoryoptioncombo (
      categoryoptioncomboid integer primary key,
      uid varchar(11) not null,
      name varchar
    )""",
    """
    create table if not exists organisationunit (
      organisationunitid integer primary key,
      uid varchar(11) not null,
      code varchar,
      name varchar not null,
      path varchar,
      hierarchylevel integer,
      geometry {geometry}
    )""",
    """
    create table if not exists trackedentitytype (
      trackedentitytypeid integer primary key,
      uid varchar(11) not null,
      name varchar
    )""",
    """
    create table if not exists trackedentity (
      trackedentityid integer primary key,
      uid varchar(11) not null,
      trackedentitytypeid integer,
      organisationunitid integer,
      geometry {geometry},
      created timestamp,
      lastupdated timestamp,
      deleted boolean default false
    )""",
    """
    create table if not exists enrollment (
      enrollmentid integer primary key,
      uid varchar(11) not null,
      programid integer,
      trackedentityid integer,
      organisationunitid integer,
      enrollmentdate timestamp,
      occurreddate timestamp,
      completeddate timestamp,
      created timestamp,
      createdatclient timestamp,
      lastupdated timestamp,
      lastupdatedatclient timestamp,
      status varchar(50),
      geometry {geometry},
      deleted boolean default false
    )""",
    """
    create table if not exists event (
      eventid integer primary key,
      uid varchar(11) not null,
      enrollmentid integer,
      programstageid integer,
      organisationunitid integer,
      attributeoptioncomboid integer,
      occurreddate timestamp,
      scheduleddate timestamp,
      completeddate timestamp,
      created timestamp,
      createdatclient timestamp,
      lastupdated timestamp,
      lastupdatedatclient timestamp,
      storedby varchar,
      createdbyuserinfo json,
      lastupdatedbyuserinfo json,
      eventdatavalues json,
      status varchar(50),
      geometry {geometry},
      deleted boolean default false
    )""",
    """
    create table if not exists trackedentityattributevalue (
      trackedentityid integer,
      trackedentityattributeid integer,
      value varchar,
      created timestamp,
      lastupdated timestamp
    )""",
    """
    create table if not exists maplegend (
      maplegendid integer primary key,
      uid varchar(11) not null,
      maplegendsetid integer,
      startvalue double,
      endvalue double,
      name varchar
    )""",
    """
    create table if not exists analytics_rs_dateperiodstructure (
      dateperiod date primary key,
      year integer not null,
      daily varchar,
      weekly varchar,
      monthly varchar,
      quarterly varchar,
      yearly varchar
    )""",
]


def _levels(catalog: MetadataCatalog) -> List[int]:
    levels = [lv.level for lv in catalog.org_unit_levels()]
    return levels or [1]


def _categories(catalog: MetadataCatalog) -> List[str]:
    uids = []
    for program in catalog.programs():
        if program.category_combo is None:
            continue
        for category in program.category_combo.categories:
            if category.uid not in uids:
                uids.append(category.uid)
    return uids


def resource_table_ddls(catalog: MetadataCatalog) -> List[str]:
    levels = _levels(catalog)
    ous_cols = ", ".join(
        [f"uidlevel{n} varchar(11)" for n in levels] + [f"namelevel{n} varchar" for n in levels]
    )
    ougs_cols = "".join(
        f", {quote_ident(gs.uid)} varchar(11)" for gs in catalog.org_unit_group_sets()
    )
    acs_cols = "".join(f", {quote_ident(uid)} varchar(11)" for uid in _categories(catalog))
    return [
        "create table if not exists analytics_rs_orgunitstructure ("
        "organisationunitid integer primary key, organisationunituid varchar(11), "
        f"level integer, {ous_cols})",
        "create table if not exists analytics_rs_organisationunitgroupsetstructure ("
        f"organisationunitid integer primary key{ougs_cols})",
        "create table if not exists analytics_rs_categorystructure ("
        f"categoryoptioncomboid integer primary key{acs_cols})",
    ]


def create_source_schema(store, catalog: MetadataCatalog, spatial: bool = False) -> None:
    geometry = "geometry" if spatial else "varchar"
    for ddl in SOURCE_DDLS:
        store.execute(ddl.format(geometry=geometry))
    for ddl in resource_table_ddls(catalog):
        store.execute(ddl)
    log.info("source.schema_created", spatial=spatial)


def populate_date_period_structure(
    store, first_year: int, last_year: int, calendar: Optional[Calendar] = None
) -> int:
    """
    Day -> period mapping for the calendar years ``[first_year, last_year]``.

    ``year`` and ``yearly`` follow the installation calendar; the daily,
    weekly, monthly and quarterly periods stay ISO.
    """
    calendar = calendar or get_calendar("iso8601")
    bounds = ", ".join(
        f"({year}, timestamp '{to_long_date(calendar.start_of_year(year))}', "
        f"timestamp '{to_long_date(calendar.end_of_year(year))}')"
        for year in range(int(first_year), int(last_year) + 1)
    )
    store.execute("delete from analytics_rs_dateperiodstructure")
    if not bounds:
        return 0
    rows = store.execute(
        f"""
        insert into analytics_rs_dateperiodstructure
        select cast(t.d as date),
               y.year,
               strftime(t.d, '%Y%m%d'),
               cast(isoyear(t.d) as varchar) || 'W' || cast(week(t.d) as varchar),
               strftime(t.d, '%Y%m'),
               cast(year(t.d) as varchar) || 'Q' || cast(quarter(t.d) as varchar),
               cast(y.year as varchar)
        from generate_series(
          timestamp '{to_long_date(calendar.start_of_year(int(first_year)))}',
          timestamp '{to_long_date(calendar.end_of_year(int(last_year)))}' - interval 1 day,
          interval 1 day
        ) as t(d)
        join (values {bounds}) as y(year, s, e) on t.d >= y.s and t.d < y.e
        """
    )
    log.info(
        "source.date_periods",
        calendar=calendar.name,
        first_year=first_year,
        last_year=last_year,
        rows=rows,
    )
    return rows


def populate_org_unit_structure(store, catalog: MetadataCatalog) -> int:
    """Flatten ``organisationunit.path`` into one uid/name column per level."""
    levels = _levels(catalog)
    uid_exprs = [f"nullif(split_part(ou.path, '/', {n + 1}), '')" for n in levels]
    name_exprs = [
        f"(select o.name from organisationunit o where o.uid = {expr})" for expr in uid_exprs
    ]
    store.execute("delete from analytics_rs_orgunitstructure")
    rows = store.execute(
        "insert into analytics_rs_orgunitstructure "
        "select ou.organisationunitid, ou.uid, ou.hierarchylevel, "
        + ", ".join(uid_exprs + name_exprs)
        + " from organisationunit ou"
    )
    log.info("source.org_unit_structure", rows=rows)
    return rows


def init_source(
    store,
    catalog: MetadataCatalog,
    first_year: int,
    last_year: int,
    watermarks=None,
    spatial: bool = False,
    now: Optional[datetime] = None,
    calendar: Optional[Calendar] = None,
) -> None:
    create_source_schema(store, catalog, spatial=spatial)
    populate_date_period_structure(store, first_year, last_year, calendar)
    populate_org_unit_structure(store, catalog)
    if watermarks is not None and now is not None:
        watermarks.set_setting(LAST_RESOURCE_TABLES_UPDATE, now)
