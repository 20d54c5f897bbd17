from __future__ import annotations
from datetime import datetime
from typing import List, Optional, Tuple

from analytics_tables.core.types import Column, Partition, RefreshParams, TableType
from analytics_tables.metadata.model import TrackedEntityType
from analytics_tables.sql.template import Fragment, SqlTemplate
from analytics_tables.tables.base import STATUS_LIST, TableManager

ENROLLMENT_DATE = Fragment("pi.enrollmentdate")

ENROLLMENT_FROM = SqlTemplate(
    "enrollment_from",
    "from enrollment pi "
    "inner join trackedentity tei on pi.trackedentityid = tei.trackedentityid "
    "and tei.deleted = false "
    "and tei.trackedentitytypeid = ${tet_id} "
    "and tei.lastupdated < ${start_time} "
    "left join program p on p.programid = pi.programid "
    "left join organisationunit ou on pi.organisationunitid = ou.organisationunitid "
    "left join analytics_rs_orgunitstructure ous "
    "on ous.organisationunitid = ou.organisationunitid "
    "left join analytics_rs_dateperiodstructure dps "
    "on cast(${enrollment_date} as date)=dps.dateperiod "
    "where exists (select 1 from event psi where psi.deleted = false "
    "and psi.enrollmentid = pi.enrollmentid "
    "and psi.status in (${statuses})) "
    "and pi.lastupdated < ${start_time} ${partition_clause} "
    "and pi.occurreddate is not null "
    "and (${enrollment_date}) is not null "
    "and dps.year >= ${first_year} "
    "and dps.year <= ${last_year} "
    "and pi.deleted = false",
)

ENROLLMENT_DATA_YEARS = SqlTemplate(
    "enrollment_data_years",
    "select distinct dps.year from enrollment pi "
    "inner join trackedentity tei on pi.trackedentityid = tei.trackedentityid "
    "inner join analytics_rs_dateperiodstructure dps "
    "on cast(${enrollment_date} as date)=dps.dateperiod "
    "where tei.trackedentitytypeid = ${tet_id} "
    "and pi.lastupdated <= ${start_time} "
    "and (${enrollment_date}) is not null "
    "and pi.deleted = false "
    "and dps.year >= ${first_year} "
    "and dps.year <= ${last_year} ${from_date_clause}",
)

ENROLLMENT_UPDATED = SqlTemplate(
    "enrollment_updated",
    "select pi.uid from enrollment pi "
    "inner join trackedentity tei on pi.trackedentityid = tei.trackedentityid "
    "where tei.trackedentitytypeid = ${tet_id} "
    "and pi.lastupdated >= ${start} "
    "and pi.lastupdated < ${end}",
)


class EnrollmentTableManager(TableManager):
    """One table per tracked entity type, one row per enrollment."""

    table_type = TableType.ENROLLMENT
    key_column = "programinstanceuid"

    def subjects(self) -> List[TrackedEntityType]:
        return self.deps.catalog.tracked_entity_types()

    def columns(
        self, subject: TrackedEntityType, last_resource_update: Optional[datetime]
    ) -> Tuple[Column, ...]:
        return self.deps.deriver.enrollment_columns(subject, last_resource_update)

    def from_clause(
        self, subject: TrackedEntityType, partition: Partition, params: RefreshParams, window
    ) -> str:
        return ENROLLMENT_FROM.render(
            tet_id=subject.id,
            start_time=params.start_time,
            enrollment_date=ENROLLMENT_DATE,
            statuses=STATUS_LIST,
            partition_clause=self.partition_clause(partition, ENROLLMENT_DATE, "pi.lastupdated"),
            first_year=window[0],
            last_year=window[1],
        )

    def data_years_query(self, subject: TrackedEntityType, params: RefreshParams, window) -> str:
        return ENROLLMENT_DATA_YEARS.render(
            enrollment_date=ENROLLMENT_DATE,
            tet_id=subject.id,
            start_time=params.start_time,
            first_year=window[0],
            last_year=window[1],
            from_date_clause=self.from_date_clause(params, ENROLLMENT_DATE),
        )

    def updated_query(self, subject: TrackedEntityType, start: datetime, end: datetime) -> str:
        return ENROLLMENT_UPDATED.render(tet_id=subject.id, start=start, end=end)
