import json
from datetime import datetime, timezone

import pytest

from analytics_tables.core.config import AnalyticsTableSettings, Settings
from analytics_tables.core.time import as_utc
from analytics_tables.metadata.catalog import MetadataCatalog
from analytics_tables.refresh.locks import TableLocks
from analytics_tables.refresh.orchestrator import create_orchestrator
from analytics_tables.source.ddls import (
    create_source_schema,
    populate_date_period_structure,
    populate_org_unit_structure,
)
from analytics_tables.store.duckdb_store import DuckDBStore

T0 = datetime(2024, 6, 1, 12, 0, tzinfo=timezone.utc)
BEFORE_T0 = datetime(2024, 1, 15, 8, 0)

CATALOG = {
    "org_unit_levels": [{"level": 1, "name": "National"}, {"level": 2, "name": "District"}],
    "org_unit_group_sets": [
        {"id": 1, "uid": "OugsTypeA01", "name": "Facility type", "created": datetime(2020, 1, 1)}
    ],
    "legend_sets": [{"id": 1, "uid": "LgsWeight01", "name": "Weight bands"}],
    "categories": [
        {"id": 1, "uid": "CatFunder01", "name": "Funder", "created": datetime(2020, 1, 1)},
        {"id": 2, "uid": "CatHidden01", "name": "Hidden", "data_dimension": False},
    ],
    "category_combos": [
        {"uid": "CcFunding01", "categories": ["CatFunder01", "CatHidden01"]},
    ],
    "data_elements": [
        {"id": 1, "uid": "DeWeight001", "value_type": "NUMBER", "legend_sets": ["LgsWeight01"]},
        {"id": 2, "uid": "DeVisits001", "value_type": "INTEGER_ZERO_OR_POSITIVE"},
        {"id": 3, "uid": "DeVisitDt01", "value_type": "DATE"},
        {"id": 4, "uid": "DeReferOu01", "value_type": "ORGANISATION_UNIT"},
        {"id": 5, "uid": "DeNotes0001", "value_type": "LONG_TEXT"},
        {"id": 6, "uid": "DeOld000001", "value_type": "TEXT", "deleted": True},
        {"id": 7, "uid": "DeSkipped01", "value_type": "TEXT", "skip_analytics": True},
        {"id": 8, "uid": "DeLink00001", "value_type": "TRACKER_ASSOCIATE"},
        {"id": 9, "uid": "DeSmoker001", "value_type": "BOOLEAN"},
    ],
    "attributes": [
        {"id": 1, "uid": "TeaGender01", "value_type": "TEXT", "has_option_set": True},
        {"id": 2, "uid": "TeaAge00001", "value_type": "INTEGER", "legend_sets": ["LgsWeight01"]},
        {"id": 3, "uid": "TeaNatId001", "value_type": "TEXT", "confidential": True},
    ],
    "tracked_entity_types": [
        {"id": 1, "uid": "TetPerson01", "attributes": ["TeaGender01", "TeaAge00001", "TeaNatId001"]}
    ],
    "programs": [
        {
            "id": 1,
            "uid": "PrgMaterna1",
            "registration": True,
            "category_combo": "CcFunding01",
            "tracked_entity_type": "TetPerson01",
            "data_elements": [
                "DeWeight001",
                "DeVisits001",
                "DeVisitDt01",
                "DeReferOu01",
                "DeNotes0001",
                "DeOld000001",
                "DeSkipped01",
                "DeLink00001",
                "DeSmoker001",
            ],
            "attributes": ["TeaGender01", "TeaAge00001", "TeaNatId001"],
        }
    ],
}

EVENT_TABLE = "analytics_event_prgmaterna1"
ENROLLMENT_TABLE = "analytics_tei_enrollments_tetperson01"


class MemoryWatermarkStore:
    """In-memory watermark store for tests."""

    def __init__(self):
        self.values = {}

    def get_setting(self, key):
        return self.values.get(key)

    def set_setting(self, key, value):
        self.values[key] = as_utc(value)

    def delete_setting(self, key):
        self.values.pop(key, None)


class SourceData:
    """Inserts transactional rows into the source tables."""

    def __init__(self, store):
        self.store = store

    def event(
        self,
        eventid,
        uid,
        occurred,
        lastupdated=BEFORE_T0,
        values=None,
        status="COMPLETED",
        deleted=False,
        enrollmentid=1,
    ):
        self.store.execute(
            "insert into event (eventid, uid, enrollmentid, programstageid, organisationunitid, "
            "attributeoptioncomboid, occurreddate, created, lastupdated, storedby, "
            "createdbyuserinfo, eventdatavalues, status, deleted) "
            "values (?, ?, ?, 1, 2, 1, ?, ?, ?, 'admin', ?, ?, ?, ?)",
            [
                eventid,
                uid,
                enrollmentid,
                occurred,
                occurred,
                lastupdated,
                json.dumps({"username": "admin", "firstName": "Ada", "surname": "Lovelace"}),
                json.dumps({k: {"value": v} for k, v in (values or {}).items()}),
                status,
                deleted,
            ],
        )

    def update_event(self, uid, lastupdated, values):
        self.store.execute(
            "update event set lastupdated = ?, eventdatavalues = ? where uid = ?",
            [lastupdated, json.dumps({k: {"value": v} for k, v in values.items()}), uid],
        )


def seed_reference_data(store):
    store.execute("insert into program values (1, 'PrgMaterna1', 'Maternal care')")
    store.execute("insert into programstage values (1, 'PsVisit0001', 1)")
    store.execute("insert into categoryoptioncombo values (1, 'CocFundA001', 'Funder A')")
    store.execute(
        "insert into organisationunit (organisationunitid, uid, code, name, path, hierarchylevel) "
        "values (1, 'OuNationa01', 'N', 'Nation', '/OuNationa01', 1), "
        "(2, 'OuDistric01', 'D', 'District', '/OuNationa01/OuDistric01', 2)"
    )
    store.execute("insert into trackedentitytype values (1, 'TetPerson01', 'Person')")
    store.execute(
        "insert into trackedentity (trackedentityid, uid, trackedentitytypeid, "
        "organisationunitid, created, lastupdated) "
        "values (1, 'TeiPerson01', 1, 2, ?, ?)",
        [datetime(2018, 1, 1), BEFORE_T0],
    )
    store.execute(
        "insert into enrollment (enrollmentid, uid, programid, trackedentityid, "
        "organisationunitid, enrollmentdate, occurreddate, created, lastupdated, status) "
        "values (1, 'EnrPerson01', 1, 1, 2, ?, ?, ?, ?, 'ACTIVE')",
        [datetime(2018, 2, 1), datetime(2018, 2, 1), datetime(2018, 2, 1), BEFORE_T0],
    )
    store.execute(
        "insert into trackedentityattributevalue (trackedentityid, trackedentityattributeid, value) "
        "values (1, 1, 'Female'), (1, 2, '34'), (1, 3, 'X-123')"
    )
    store.execute(
        "insert into maplegend values "
        "(1, 'LgLight0001', 1, 0, 50, 'Light'), (2, 'LgHeavy0001', 1, 50, 500, 'Heavy')"
    )
    store.execute(
        "insert into analytics_rs_organisationunitgroupsetstructure values "
        "(1, NULL), (2, 'OugClinic01')"
    )
    store.execute("insert into analytics_rs_categorystructure values (1, 'CoFunderA01', NULL)")


@pytest.fixture
def catalog():
    return MetadataCatalog.from_dict(CATALOG)


@pytest.fixture
def settings():
    return AnalyticsTableSettings(
        Settings(
            _env_file=None,
            EARLIEST_YEAR=2015,
            LATEST_YEAR=2024,
            SPATIAL_SUPPORT=False,
            CREATE_INDEXES=False,
            PARALLEL_JOBS=2,
        )
    )


@pytest.fixture
def store():
    s = DuckDBStore.connect(":memory:")
    yield s
    s.close()


@pytest.fixture
def source(store, catalog):
    create_source_schema(store, catalog)
    populate_date_period_structure(store, 2015, 2024)
    seed_reference_data(store)
    populate_org_unit_structure(store, catalog)
    return SourceData(store)


@pytest.fixture
def watermarks():
    return MemoryWatermarkStore()


@pytest.fixture
def make_orchestrator(store, catalog, settings, watermarks):
    def _make(settings=settings, store=store, hooks=None, locks=None):
        return create_orchestrator(
            settings,
            store,
            catalog,
            watermarks=watermarks,
            hooks=hooks,
            locks=locks or TableLocks(),
        )

    return _make
