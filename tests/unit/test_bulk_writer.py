"""
Unit tests for parameter-bounded bulk upserts
"""

import pytest
from unittest.mock import AsyncMock
from sqlalchemy import func, select
from sqlalchemy.dialects import postgresql

from core.exceptions import PersistenceError
from ingestion.loaders.bulk_writer import BulkWriter, batch_size_for, text_limits
from models.roster import Allocation, AssessmentComponent, OrgUnit
from models.base import PersonRole
from schemas.records import AllocationRecord, AssessmentRecord, OrganizationRecord


def assessment_records(count):
    return [
        AssessmentRecord(
            natural_key=f"R{i}|2024|T1|SUB-1|10A|Exam",
            school_id="S1",
            register_number=f"R{i}",
            grade_name="10",
            component_name="Exam",
            component_value="80",
            max_value=100.0,
        )
        for i in range(count)
    ]


class TestBatchSize:

    def test_twenty_three_parameter_rows(self):
        assert batch_size_for(23, parameter_ceiling=2100, headroom=30) == 90

    def test_never_exceeds_ceiling(self):
        for width in (1, 7, 23, 64, 500, 2100):
            size = batch_size_for(width, parameter_ceiling=2100, headroom=30)
            assert size >= 1
            assert size * width <= 2100

    def test_rejects_impossible_width(self):
        with pytest.raises(ValueError):
            batch_size_for(0)
        with pytest.raises(ValueError):
            batch_size_for(2101, parameter_ceiling=2100)


class TestBulkWriterBatches:

    @pytest.mark.asyncio
    async def test_250_records_split_into_three_batches(self):
        db = AsyncMock()
        writer = BulkWriter(db, "tenant_nq", parameter_ceiling=2100, headroom=30, dialect="postgresql")

        written = await writer.write_batch(AssessmentComponent, assessment_records(250))

        assert written == 250
        statements = [c.args[0] for c in db.execute.await_args_list]
        parameter_counts = [len(stmt.compile(dialect=postgresql.dialect()).params) for stmt in statements]
        assert parameter_counts == [90 * 23, 90 * 23, 70 * 23]
        assert all(count <= 2100 for count in parameter_counts)
        db.commit.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_failed_batch_rolls_back_everything(self):
        db = AsyncMock()
        db.execute.side_effect = [None, RuntimeError("deadlock detected"), None]
        writer = BulkWriter(db, "tenant_nq", parameter_ceiling=2100, headroom=30, dialect="postgresql")

        with pytest.raises(PersistenceError) as exc_info:
            await writer.write_batch(AssessmentComponent, assessment_records(250))

        context = exc_info.value.context
        assert context["table_name"] == "assessment_components"
        assert context["batch_index"] == 1
        assert context["batch_count"] == 3
        assert context["batch_size"] == 90
        db.rollback.assert_awaited_once()
        db.commit.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_empty_input_is_noop(self):
        db = AsyncMock()

        assert await BulkWriter(db, "t", dialect="postgresql").write_batch(OrgUnit, []) == 0
        db.execute.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_conflict_targets_tenant_and_natural_key(self):
        db = AsyncMock()
        writer = BulkWriter(db, "t", dialect="postgresql")

        await writer.write_batch(OrgUnit, [OrganizationRecord(natural_key="S1", name="North")])

        sql = str(db.execute.await_args.args[0].compile(dialect=postgresql.dialect()))
        assert "ON CONFLICT (tenant_id, natural_key) DO UPDATE" in sql


class TestBulkWriterSqlite:

    @pytest.mark.asyncio
    async def test_rerun_updates_in_place(self, db_session):
        writer = BulkWriter(db_session, "tenant_nq")

        await writer.write_batch(OrgUnit, [
            OrganizationRecord(natural_key="S1", name="North Campus", org_type="school"),
            OrganizationRecord(natural_key="S2", name="South Campus", org_type="school"),
        ])
        await writer.write_batch(OrgUnit, [
            OrganizationRecord(natural_key="S1", name="North Campus (renamed)", org_type="school"),
        ])

        rows = (await db_session.execute(select(OrgUnit).order_by(OrgUnit.natural_key))).scalars().all()
        assert [(row.natural_key, row.name) for row in rows] == [
            ("S1", "North Campus (renamed)"),
            ("S2", "South Campus"),
        ]

    @pytest.mark.asyncio
    async def test_same_key_in_one_call_last_wins(self, db_session):
        writer = BulkWriter(db_session, "tenant_nq")

        written = await writer.write_batch(OrgUnit, [
            OrganizationRecord(natural_key="S1", name="First"),
            OrganizationRecord(natural_key="S1", name="Second"),
        ])

        assert written == 1
        name = (await db_session.execute(select(OrgUnit.name))).scalar_one()
        assert name == "Second"

    @pytest.mark.asyncio
    async def test_tenants_isolated(self, db_session):
        await BulkWriter(db_session, "tenant_a").write_batch(OrgUnit, [OrganizationRecord(natural_key="S1")])
        await BulkWriter(db_session, "tenant_b").write_batch(OrgUnit, [OrganizationRecord(natural_key="S1")])

        count = (await db_session.execute(select(func.count()).select_from(OrgUnit))).scalar_one()
        assert count == 2

    @pytest.mark.asyncio
    async def test_replace_where_drops_withdrawn_rows(self, db_session):
        writer = BulkWriter(db_session, "tenant_nq")

        def allocation(target):
            return AllocationRecord(
                natural_key=f"student:stu-1:subject:{target}:2024",
                person_role=PersonRole.STUDENT,
                person_key="stu-1",
                kind="subject",
                target_key=target,
                academic_year="2024",
                org_key="S1",
            )

        scope = [Allocation.org_key == "S1", Allocation.person_role == "student"]
        await writer.write_batch(Allocation, [allocation("MATH"), allocation("ART")], replace_where=scope)
        await writer.write_batch(Allocation, [allocation("MATH")], replace_where=scope)

        targets = (await db_session.execute(select(Allocation.target_key))).scalars().all()
        assert targets == ["MATH"]

    @pytest.mark.asyncio
    async def test_long_text_clamped_to_column_length(self, db_session):
        record = AssessmentRecord(
            natural_key="R1|2024|T1|SUB-1|10A|Exam",
            register_number="R1",
            grade_name="G" * 10000,
            class_name="C" * 300,
            component_name="Exam",
        )

        await BulkWriter(db_session, "tenant_nq").write_batch(AssessmentComponent, [record])

        stored = (await db_session.execute(
            select(AssessmentComponent.grade_name, AssessmentComponent.class_name)
        )).one()
        assert stored.grade_name == "G" * 100
        assert stored.class_name == "C" * 255


class TestTextLimits:

    def test_bounded_string_columns(self):
        limits = text_limits(AssessmentComponent)

        assert limits["grade_name"] == 100
        assert limits["component_value"] == 500
        assert "max_value" not in limits
