from __future__ import annotations
from datetime import datetime
from typing import List, Optional, Tuple

from analytics_tables.core.types import Column, Partition, RefreshParams, TableType
from analytics_tables.metadata.model import Program
from analytics_tables.sql.template import Fragment, SqlTemplate
from analytics_tables.tables.base import STATUS_LIST, TableManager

EVENT_DATE = Fragment(
    "case when 'SCHEDULE' = psi.status then psi.scheduleddate else psi.occurreddate end"
)

EVENT_FROM = SqlTemplate(
    "event_from",
    "from event psi "
    "inner join enrollment pi on psi.enrollmentid=pi.enrollmentid "
    "inner join programstage ps on psi.programstageid=ps.programstageid "
    "inner join program pr on pi.programid=pr.programid and pi.deleted = false "
    "inner join categoryoptioncombo ao on psi.attributeoptioncomboid=ao.categoryoptioncomboid "
    "left join trackedentity tei on pi.trackedentityid=tei.trackedentityid "
    "and tei.deleted = false "
    "left join organisationunit registrationou "
    "on tei.organisationunitid=registrationou.organisationunitid "
    "inner join organisationunit ou on psi.organisationunitid=ou.organisationunitid "
    "left join analytics_rs_orgunitstructure ous "
    "on psi.organisationunitid=ous.organisationunitid "
    "left join analytics_rs_organisationunitgroupsetstructure ougs "
    "on psi.organisationunitid=ougs.organisationunitid "
    "left join organisationunit enrollmentou "
    "on pi.organisationunitid=enrollmentou.organisationunitid "
    "inner join analytics_rs_categorystructure acs "
    "on psi.attributeoptioncomboid=acs.categoryoptioncomboid "
    "left join analytics_rs_dateperiodstructure dps "
    "on cast(${event_date} as date)=dps.dateperiod "
    "where psi.lastupdated < ${start_time} ${partition_clause} "
    "and pr.programid=${program_id} "
    "and psi.organisationunitid is not null "
    "and (${event_date}) is not null "
    "and dps.year >= ${first_year} "
    "and dps.year <= ${last_year} "
    "and psi.status in (${statuses}) "
    "and psi.deleted = false",
)

EVENT_DATA_YEARS = SqlTemplate(
    "event_data_years",
    "select distinct dps.year from event psi "
    "inner join enrollment pi on psi.enrollmentid = pi.enrollmentid "
    "inner join analytics_rs_dateperiodstructure dps "
    "on cast(${event_date} as date)=dps.dateperiod "
    "where psi.lastupdated <= ${start_time} "
    "and pi.programid = ${program_id} "
    "and (${event_date}) is not null "
    "and (${event_date}) > '1000-01-01' "
    "and psi.deleted = false "
    "and dps.year >= ${first_year} "
    "and dps.year <= ${last_year} ${from_date_clause}",
)

EVENT_UPDATED = SqlTemplate(
    "event_updated",
    "select psi.uid from event psi "
    "inner join enrollment pi on psi.enrollmentid=pi.enrollmentid "
    "where pi.programid = ${program_id} "
    "and psi.lastupdated >= ${start} "
    "and psi.lastupdated < ${end}",
)

YEARLY_CHECK = SqlTemplate("yearly_check", "\"yearly\" = '${year}'")


class EventTableManager(TableManager):
    """One table per program, one row per event."""

    table_type = TableType.EVENT
    key_column = "psi"

    def subjects(self) -> List[Program]:
        return self.deps.catalog.programs()

    def columns(self, subject: Program, last_resource_update: Optional[datetime]) -> Tuple[Column, ...]:
        return self.deps.deriver.event_columns(subject, last_resource_update)

    def partition_checks(self, year: int) -> Tuple[str, ...]:
        return (YEARLY_CHECK.render(year=year),)

    def from_clause(
        self, subject: Program, partition: Partition, params: RefreshParams, window
    ) -> str:
        return EVENT_FROM.render(
            event_date=EVENT_DATE,
            start_time=params.start_time,
            partition_clause=self.partition_clause(partition, EVENT_DATE, "psi.lastupdated"),
            program_id=subject.id,
            first_year=window[0],
            last_year=window[1],
            statuses=STATUS_LIST,
        )

    def data_years_query(self, subject: Program, params: RefreshParams, window) -> str:
        return EVENT_DATA_YEARS.render(
            event_date=EVENT_DATE,
            start_time=params.start_time,
            program_id=subject.id,
            first_year=window[0],
            last_year=window[1],
            from_date_clause=self.from_date_clause(params, EVENT_DATE),
        )

    def updated_query(self, subject: Program, start: datetime, end: datetime) -> str:
        return EVENT_UPDATED.render(program_id=subject.id, start=start, end=end)
