"""
End-to-end domain syncs against mocked provider APIs and an in-memory database
"""

from datetime import date

import httpx
import pytest
import pytest_asyncio
from sqlalchemy import select

from ingestion.auth import TokenStore
from ingestion.context import SyncScope, build_context
from ingestion.runner import SyncRunner
from models.base import SyncStatus
from models.reporting import AssessmentComponentConfig, ReportingAssessment
from models.catalogue import AcademicPeriod, GradeLevel, Subject
from models.roster import (
    Allocation,
    AllocationMasterEntry,
    AssessmentComponent,
    AttendanceEvent,
    DailyPlan,
    OrgUnit,
    SchoolClass,
    Student,
)
from models.sync_run import SyncRun

XLSX_TYPE = "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet"
ONEROSTER = "/ims/oneroster/v1p1"


class FakeProvider:
    """Routes requests by path; records every request it sees"""

    def __init__(self, routes):
        self.routes = routes
        self.requests = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if request.url.path == "/oauth2/v1/token":
            return httpx.Response(200, json={"access_token": "token", "expires_in": 3600})
        route = self.routes.get(request.url.path)
        if route is None:
            return httpx.Response(404, json={"error": "not found"})
        if callable(route):
            return route(request)
        return httpx.Response(200, json=route)

    def paths(self):
        return [request.url.path for request in self.requests]


def make_context(tenant, db_session, provider):
    http = httpx.AsyncClient(transport=httpx.MockTransport(provider))
    ctx = build_context(tenant, db_session, http, TokenStore())
    ctx.retriever.page_delay = 0
    ctx.spreadsheets.chunk_delay = 0
    return ctx


NEXQUARE_SCHOOLS = {
    "orgs": [
        {"sourcedId": "S1", "name": "North Campus", "type": "school", "identifier": "NC"},
    ]
}


@pytest_asyncio.fixture
async def final_exam_reported(db_session):
    db_session.add(AssessmentComponentConfig(
        tenant_id="tenant_nq", school_id="S1", component_name="Final Exam", is_active=True
    ))
    await db_session.commit()


class TestNexquareSync:

    @pytest.mark.asyncio
    async def test_schools_students_and_assessments(
        self, db_session, nexquare_tenant, mock_oneroster_students, build_xlsx, assessment_export,
        final_exam_reported,
    ):
        export = build_xlsx(assessment_export(("REG-001", "10"), ("REG-002", "12"), ("REG-003", "11")))

        def assessments(request):
            assert request.url.params["schoolIds"] == "S1"
            assert request.url.params["offset"] == "0"
            return httpx.Response(200, content=export, headers={"content-type": XLSX_TYPE})

        provider = FakeProvider({
            "/nexquare/ims/oneroster/v1p1/schools": NEXQUARE_SCHOOLS,
            f"{ONEROSTER}/schools/S1/students/": mock_oneroster_students,
            f"{ONEROSTER}/assessment/students": assessments,
        })
        ctx = make_context(nexquare_tenant, db_session, provider)

        report = await SyncRunner(db_session).run_tenant(
            ctx, domains=["assessments", "students", "schools"], scope=SyncScope(academic_year="2024")
        )

        assert report.succeeded
        assert list(report.results) == ["schools", "students", "assessments"]
        assert report.results["students"].persisted == 2
        assert report.results["students"].skipped == 0
        assert report.results["assessments"].persisted == 3
        assert report.results["assessments"].propagated == 2

        school_id = (await db_session.execute(select(OrgUnit.id))).scalar_one()
        org_ids = (await db_session.execute(select(Student.org_id))).scalars().all()
        assert org_ids == [school_id, school_id]

        components = (await db_session.execute(select(AssessmentComponent.register_number))).scalars().all()
        assert sorted(components) == ["REG-001", "REG-002", "REG-003"]
        reported = (await db_session.execute(select(ReportingAssessment.grade_name))).scalars().all()
        assert sorted(reported) == ["10", "12"]

        runs = (await db_session.execute(select(SyncRun).order_by(SyncRun.id))).scalars().all()
        assert [(run.domain, run.status) for run in runs] == [
            ("schools", SyncStatus.SUCCESS),
            ("students", SyncStatus.SUCCESS),
            ("assessments", SyncStatus.SUCCESS),
        ]
        assert runs[2].records_propagated == 2

    @pytest.mark.asyncio
    async def test_rerun_does_not_duplicate(self, db_session, nexquare_tenant, mock_oneroster_students):
        provider = FakeProvider({
            "/nexquare/ims/oneroster/v1p1/schools": NEXQUARE_SCHOOLS,
            f"{ONEROSTER}/schools/S1/students/": mock_oneroster_students,
        })
        ctx = make_context(nexquare_tenant, db_session, provider)
        runner = SyncRunner(db_session)

        await runner.run_tenant(ctx, domains=["schools", "students"])
        await runner.run_tenant(ctx, domains=["schools", "students"])

        assert len((await db_session.execute(select(Student.id))).all()) == 2
        assert provider.paths().count("/oauth2/v1/token") == 1

    @pytest.mark.asyncio
    async def test_students_before_schools_are_skipped(self, db_session, nexquare_tenant, mock_oneroster_students):
        tenant = nexquare_tenant.model_copy(update={"school_id": "S1"})
        provider = FakeProvider({f"{ONEROSTER}/schools/S1/students/": mock_oneroster_students})
        ctx = make_context(tenant, db_session, provider)

        result = await SyncRunner(db_session).run_domain(ctx, "students")

        assert result.persisted == 2
        assert result.skipped == 2
        run = (await db_session.execute(select(SyncRun))).scalar_one()
        assert run.status == SyncStatus.PARTIAL

    @pytest.mark.asyncio
    async def test_allocations_replace_previous_set(self, db_session, nexquare_tenant, mock_oneroster_students):
        allocations = {
            "users": [{
                "sourcedId": "stu-1",
                "academicYear": "2024",
                "subject": [{"sourcedId": "MATH", "subjectName": "Mathematics"},
                            {"sourcedId": "ART", "subjectName": "Art"}],
                "homeRoom": [{"sourcedId": "CLS-1", "className": "10A"}],
            }]
        }
        provider = FakeProvider({
            "/nexquare/ims/oneroster/v1p1/schools": NEXQUARE_SCHOOLS,
            f"{ONEROSTER}/schools/S1/students/": mock_oneroster_students,
            f"{ONEROSTER}/schools/S1/classes/": {"classes": [{"sourcedId": "CLS-1", "title": "10A"}]},
            f"{ONEROSTER}/schools/S1/studentsAllocation": allocations,
            f"{ONEROSTER}/schools/S1/staffAllocation": {"users": []},
        })
        ctx = make_context(nexquare_tenant, db_session, provider)
        runner = SyncRunner(db_session)

        report = await runner.run_tenant(ctx, domains=["schools", "students", "classes", "allocations"])
        assert report.succeeded
        assert report.results["allocations"].persisted == 3

        homeroom = (await db_session.execute(
            select(Allocation.class_id, Allocation.person_id).where(Allocation.kind == "homeroom")
        )).one()
        class_id = (await db_session.execute(select(SchoolClass.id))).scalar_one()
        student_id = (await db_session.execute(select(Student.id).where(Student.natural_key == "stu-1"))).scalar_one()
        assert tuple(homeroom) == (class_id, student_id)

        # ART dropped at the provider
        allocations["users"][0]["subject"] = allocations["users"][0]["subject"][:1]
        await runner.run_domain(ctx, "allocations")

        targets = (await db_session.execute(select(Allocation.target_key).order_by(Allocation.target_key))).scalars().all()
        assert targets == ["CLS-1", "MATH"]

    @pytest.mark.asyncio
    async def test_attendance_for_date_range(self, db_session, nexquare_tenant, mock_oneroster_students):
        def attendance(request):
            assert request.url.params["startDate"] == "2024-03-01"
            assert request.url.params["endDate"] == "2024-03-02"
            return httpx.Response(200, json={"data": {"attendanceList": [
                {"studentId": "stu-1", "attendanceList": [
                    {"attendanceDate": "2024-03-01", "status": "Present"},
                    {"attendanceDate": "2024-03-02", "status": "Absent"},
                ]},
                {"studentId": "stu-9", "attendanceList": [{"attendanceDate": "2024-03-01", "status": "Present"}]},
            ]}})

        provider = FakeProvider({
            "/nexquare/ims/oneroster/v1p1/schools": NEXQUARE_SCHOOLS,
            f"{ONEROSTER}/schools/S1/students/": mock_oneroster_students,
            f"{ONEROSTER}/getDailyAttendance": attendance,
        })
        ctx = make_context(nexquare_tenant, db_session, provider)
        scope = SyncScope(start_date=date(2024, 3, 1), end_date=date(2024, 3, 2))

        report = await SyncRunner(db_session).run_tenant(
            ctx, domains=["schools", "students", "attendance"], scope=scope
        )

        result = report.results["attendance"]
        assert result.persisted == 3
        assert result.skipped == 1
        events = (await db_session.execute(
            select(AttendanceEvent.natural_key, AttendanceEvent.student_id).order_by(AttendanceEvent.natural_key)
        )).all()
        assert [row[0] for row in events] == ["stu-1:2024-03-01", "stu-1:2024-03-02", "stu-9:2024-03-01"]
        assert events[2][1] is None

    @pytest.mark.asyncio
    async def test_failed_domain_recorded_and_rest_continue(self, db_session, nexquare_tenant,
                                                            mock_oneroster_students):
        provider = FakeProvider({
            "/nexquare/ims/oneroster/v1p1/schools": NEXQUARE_SCHOOLS,
            f"{ONEROSTER}/schools/S1/students/": mock_oneroster_students,
            f"{ONEROSTER}/schools/S1/staff/": {"status": "maintenance"},
        })
        ctx = make_context(nexquare_tenant, db_session, provider)

        report = await SyncRunner(db_session).run_tenant(ctx, domains=["schools", "staff", "classes"])

        assert not report.succeeded
        assert report.error_for("staff")["error_type"] == "ResponseShapeError"
        assert report.error_for("classes")["error_type"] == "PermanentHttpError"
        assert report.error_for("classes")["context"]["tenant_id"] == nexquare_tenant.id
        assert "schools" in report.results

        failed = (await db_session.execute(
            select(SyncRun).where(SyncRun.status == SyncStatus.FAILED).order_by(SyncRun.id)
        )).scalars().all()
        assert [run.domain for run in failed] == ["staff", "classes"]
        assert failed[0].error_details["context"]["domain"] == "staff"

    @pytest.mark.asyncio
    async def test_allocation_master_per_school(self, db_session, nexquare_tenant):
        provider = FakeProvider({
            "/nexquare/ims/oneroster/v1p1/schools": NEXQUARE_SCHOOLS,
            f"{ONEROSTER}/allocationMaster/S1": {"allocations": [
                {"sourcedId": "AM-1", "allocationType": "subject", "entitySourcedId": "MATH"},
                {"sourcedId": "AM-2", "allocationType": "homeroom", "entitySourcedId": "CLS-1"},
                {"allocationType": "no key"},
            ]},
        })
        ctx = make_context(nexquare_tenant, db_session, provider)

        report = await SyncRunner(db_session).run_tenant(ctx, domains=["allocation_master", "schools"])

        result = report.results["allocation_master"]
        assert (result.persisted, result.rejected) == (2, 1)
        school_id = (await db_session.execute(select(OrgUnit.id))).scalar_one()
        org_ids = (await db_session.execute(select(AllocationMasterEntry.org_id))).scalars().all()
        assert org_ids == [school_id, school_id]

    @pytest.mark.asyncio
    async def test_daily_plans_for_week(self, db_session, nexquare_tenant):
        plans = [
            {"date": "2024-03-04", "timetableLessonSourcedId": "L-1", "classSourcedId": "CLS-1", "periodNumber": 1},
            {"date": "2024-03-05", "timetableLessonSourcedId": "L-2", "classSourcedId": "CLS-GONE"},
        ]

        def daily_plan(request):
            assert request.url.params["schooolId"] == "S1"
            assert request.url.params["fromDate"] == "2024-03-04"
            assert request.url.params["toDate"] == "2024-03-10"
            assert "offset" not in request.url.params
            return httpx.Response(200, json={"plans": plans})

        provider = FakeProvider({
            "/nexquare/ims/oneroster/v1p1/schools": NEXQUARE_SCHOOLS,
            f"{ONEROSTER}/schools/S1/classes/": {"classes": [{"sourcedId": "CLS-1", "title": "10A"}]},
            f"{ONEROSTER}/dailyPlan": daily_plan,
        })
        ctx = make_context(nexquare_tenant, db_session, provider)
        scope = SyncScope(start_date=date(2024, 3, 4), end_date=date(2024, 3, 10))
        runner = SyncRunner(db_session)

        report = await runner.run_tenant(ctx, domains=["schools", "classes", "daily_plans"], scope=scope)

        result = report.results["daily_plans"]
        assert (result.persisted, result.skipped) == (2, 1)
        assert result.details == {"start_date": "2024-03-04", "end_date": "2024-03-10"}
        class_id = (await db_session.execute(select(SchoolClass.id))).scalar_one()
        stored = (await db_session.execute(
            select(DailyPlan.natural_key, DailyPlan.class_id).order_by(DailyPlan.natural_key)
        )).all()
        assert [tuple(row) for row in stored] == [("2024-03-04:L-1", class_id), ("2024-03-05:L-2", None)]

        # L-2 cancelled at the provider
        del plans[1]
        await runner.run_domain(ctx, "daily_plans", scope=scope)

        keys = (await db_session.execute(select(DailyPlan.natural_key))).scalars().all()
        assert keys == ["2024-03-04:L-1"]


class TestManageBacSync:

    @pytest.mark.asyncio
    async def test_summary_students_enriched(self, db_session, managebac_tenant):
        def detail(request):
            student_id = int(request.url.path.rsplit("/", 1)[-1])
            return httpx.Response(200, json={"student": {
                "id": student_id,
                "first_name": f"First{student_id}",
                "last_name": "Doe",
                "year_group_id": 7,
                "class_grade": "Grade 10",
            }})

        provider = FakeProvider({
            "/v2/year-groups": {"year_groups": [{"id": 7, "name": "Grade 10", "grade": "Grade 10"}],
                                "meta": {"total_pages": 1}},
            "/v2/students": {"students": [{"id": 1}, {"id": 2}], "meta": {"total_pages": 1}},
            "/v2/students/1": detail,
            "/v2/students/2": detail,
        })
        ctx = make_context(managebac_tenant, db_session, provider)

        report = await SyncRunner(db_session).run_tenant(ctx, domains=["schools", "students"])

        assert report.succeeded
        assert report.results["students"].details["enriched"] == 2
        year_group_id = (await db_session.execute(select(OrgUnit.id))).scalar_one()
        rows = (await db_session.execute(
            select(Student.given_name, Student.org_id).order_by(Student.natural_key)
        )).all()
        assert [tuple(row) for row in rows] == [("First1", year_group_id), ("First2", year_group_id)]
        assert all(r.headers["auth-token"] == "mb-key" for r in provider.requests)

    @pytest.mark.asyncio
    async def test_school_catalogue(self, db_session, managebac_tenant):
        def grades(request):
            assert request.url.params["academic_year_id"] == "5"
            return httpx.Response(200, json={"school": {"programs": [
                {"code": "myp", "grades": [{"name": "Grade 6", "code": "G6", "grade_number": 6}]},
            ]}})

        provider = FakeProvider({
            "/v2/school": {"school": {"id": 10, "name": "Harbour School", "subdomain": "harbour"}},
            "/v2/school/academic-years": {"academic_years": {"myp": {"academic_years": [
                {"id": 5, "name": "2024 - 2025", "academic_terms": [{"id": 51, "name": "Term 1"}]},
            ]}}},
            "/v2/school/grades": grades,
            "/v2/school/subjects": {"subjects": {"MYP": [{"id": 3, "name": "Biology"}]}},
        })
        ctx = make_context(managebac_tenant, db_session, provider)

        report = await SyncRunner(db_session).run_tenant(
            ctx, domains=["subjects", "grades", "academic_years", "school_details"],
            scope=SyncScope(academic_year="2024"),
        )

        assert report.succeeded
        assert list(report.results) == ["school_details", "academic_years", "grades", "subjects"]
        assert report.results["academic_years"].details == {"terms": 1}

        school = (await db_session.execute(select(OrgUnit.natural_key, OrgUnit.org_type))).one()
        assert tuple(school) == ("school:10", "school")
        periods = (await db_session.execute(
            select(AcademicPeriod.natural_key, AcademicPeriod.parent_key, AcademicPeriod.starts_on)
            .order_by(AcademicPeriod.natural_key)
        )).all()
        assert [tuple(row) for row in periods] == [
            ("term:51", "year:5", date(2024, 8, 1)),
            ("year:5", None, date(2024, 8, 1)),
        ]
        assert (await db_session.execute(select(GradeLevel.natural_key))).scalar_one() == "myp:G6"
        assert (await db_session.execute(select(Subject.program_code))).scalar_one() == "myp"

    @pytest.mark.asyncio
    async def test_memberships_become_class_allocations(self, db_session, managebac_tenant):
        def memberships(request):
            assert request.url.params["user_ids"] == "1,2"
            assert request.url.params["classes"] == "active"
            return httpx.Response(200, json={"memberships": [
                {"user_id": 1, "class_id": 12, "role": "Student"},
                {"user_id": 2, "class_id": 12, "role": "Student"},
                {"user_id": 99, "class_id": 12, "role": "Teacher"},
            ], "meta": {"total_pages": 1}})

        provider = FakeProvider({
            "/v2/year-groups": {"year_groups": [{"id": 7, "name": "Grade 10"}], "meta": {"total_pages": 1}},
            "/v2/students": {"students": [
                {"id": 1, "first_name": "Amina", "year_group_id": 7},
                {"id": 2, "first_name": "Leo", "year_group_id": 7},
            ], "meta": {"total_pages": 1}},
            "/v2/classes": {"classes": [{"id": 12, "name": "Mathematics", "year_group_id": 7}],
                            "meta": {"total_pages": 1}},
            "/v2/memberships": memberships,
        })
        ctx = make_context(managebac_tenant, db_session, provider)

        report = await SyncRunner(db_session).run_tenant(
            ctx, domains=["schools", "students", "classes", "allocations"]
        )

        result = report.results["allocations"]
        assert (result.persisted, result.skipped) == (3, 1)
        assert result.details == {"students": 2}

        class_id = (await db_session.execute(select(SchoolClass.id))).scalar_one()
        rows = (await db_session.execute(
            select(Allocation.person_role, Allocation.kind, Allocation.class_id, Allocation.person_id)
            .order_by(Allocation.natural_key)
        )).all()
        assert [tuple(row)[:3] for row in rows] == [
            ("staff", "class", class_id),
            ("student", "class", class_id),
            ("student", "class", class_id),
        ]
        assert rows[0][3] is None
        assert "/v2/school/academic-years" not in provider.paths()

    @pytest.mark.asyncio
    async def test_memberships_without_students_fetch_nothing(self, db_session, managebac_tenant):
        provider = FakeProvider({})
        ctx = make_context(managebac_tenant, db_session, provider)

        result = await SyncRunner(db_session).run_domain(ctx, "allocations")

        assert result.persisted == 0
        assert "/v2/memberships" not in provider.paths()

    def test_managebac_rejects_nexquare_only_domains(self, managebac_tenant):
        from ingestion.domains import plan_domains

        with pytest.raises(ValueError):
            plan_domains(managebac_tenant.provider, ["attendance"])
