"""
Tests for ImportService.

Validates:
- Staging reads CSV, JSON and XLSX sources into one record per row
- Validation flags field, entity, in-batch and live-data problems
- Promotion creates live entities through the module services and
  contains per-record failures
- Rollback removes promoted entities unless they gained dependents
- Batch lifecycle and tenant isolation
"""

import json
from datetime import date
from decimal import Decimal
from uuid import uuid4

import openpyxl
import pytest

from care_ingestion.domain.types import FieldMapping, FieldType, ImportBatchStatus, ImportRecordStatus
from care_ingestion.services.import_service import ImportService
from care_kernel.exceptions import (
    DuplicateEntityError,
    ImportBatchNotFoundError,
    InvalidChoiceError,
    InvalidTransitionError,
    LedgerAccountNotFoundError,
    ResidentNotFoundError,
    TenantIsolationError,
    ValidationError,
)
from care_kernel.services.audit_service import AuditService
from care_modules.billing.service import BillingService
from care_modules.ledger.service import LedgerAccountService
from care_modules.payroll.models import PayBasis
from care_modules.payroll.service import PayrollService

RESIDENT_CSV = (
    "Forename,Surname,NHS No,DOB,Admitted,Weekly Fee,Allergies\n"
    'Margaret,Thompson,943 476 5919,14/03/1938,06/01/2025,"£1,050.00",Penicillin; Latex\n'
    "Harold,Jones,401 023 2137,02/11/1940,13/01/2025,980.00,\n"
    "Ada,Smith,123 456 7890,01/01/1945,01/02/2025,900,\n"
)

RESIDENT_MAPPINGS = [
    FieldMapping("Forename", "first_name", required=True, transform="strip"),
    FieldMapping("Surname", "last_name", required=True),
    FieldMapping("NHS No", "nhs_number", required=True),
    FieldMapping("DOB", "date_of_birth", FieldType.DATE, required=True, format="%d/%m/%Y"),
    FieldMapping("Admitted", "admission_date", FieldType.DATE, required=True, format="%d/%m/%Y"),
    FieldMapping("Weekly Fee", "weekly_fee", FieldType.DECIMAL, transform="to_decimal"),
    FieldMapping("Allergies", "allergies"),
]


@pytest.fixture
def importer(session, deterministic_clock):
    return ImportService(session, clock=deterministic_clock)


@pytest.fixture
def write_file(tmp_path):
    def _write(name, content):
        path = tmp_path / name
        path.write_text(content, encoding="utf-8")
        return path
    return _write


@pytest.fixture
def stage_residents(importer, write_file, tenant_id, test_actor_id):
    def _stage(content=RESIDENT_CSV):
        path = write_file("residents.csv", content)
        return importer.stage(tenant_id, test_actor_id, "resident", path, RESIDENT_MAPPINGS)
    return _stage


def _by_row(importer, batch_id, tenant_id):
    return {r.source_row: r for r in importer.list_records(batch_id, tenant_id)}


class TestProbe:
    def test_probe_csv(self, importer, write_file):
        probe = importer.probe_source(write_file("residents.csv", RESIDENT_CSV))
        assert probe.row_count == 3
        assert probe.columns[:3] == ("Forename", "Surname", "NHS No")
        assert probe.sample_rows[0]["Surname"] == "Thompson"
        assert probe.detected_delimiter == ","

    def test_probe_strips_excel_bom(self, importer, tmp_path):
        path = tmp_path / "export.csv"
        path.write_bytes("\ufeffForename,Surname\nMargaret,Thompson\n".encode("utf-8"))
        assert importer.probe_source(path).columns == ("Forename", "Surname")

    def test_unreadable_sources(self, importer, tmp_path, write_file):
        with pytest.raises(ValidationError):
            importer.probe_source(tmp_path / "missing.csv")
        with pytest.raises(ValidationError):
            importer.probe_source(write_file("notes.txt", "hello"))
        with pytest.raises(ValidationError):
            importer.probe_source(write_file("broken.json", '{"residents": 3}'))


class TestStage:
    def test_stage_csv(self, stage_residents, importer, session, tenant_id):
        batch = stage_residents()
        assert batch.status == ImportBatchStatus.STAGED
        assert batch.entity_type == "resident"
        assert batch.source_filename == "residents.csv"
        assert batch.source_format == "csv"
        assert batch.total_records == 3

        records = _by_row(importer, batch.batch_id, tenant_id)
        assert all(r.status == ImportRecordStatus.STAGED for r in records.values())
        assert records[1].raw_data["Weekly Fee"] == "£1,050.00"
        assert records[1].mapped_data["weekly_fee"] == "1050.00"
        assert records[1].mapped_data["date_of_birth"] == "1938-03-14"

        events = AuditService(session).list_events(tenant_id, entity_type="ImportBatch")
        assert [e.action for e in events] == ["IMPORT_BATCH_STAGED"]

    def test_mapping_errors_kept_at_stage(self, stage_residents, importer, tenant_id):
        batch = stage_residents("Forename,Surname,NHS No,DOB,Admitted\nMargaret,,943 476 5919,14/03/1938,\n")
        (record,) = importer.list_records(batch.batch_id, tenant_id)
        assert record.mapped_data is None
        assert {e.field for e in record.errors} == {"last_name", "admission_date"}

    def test_blank_lines_skipped(self, stage_residents):
        batch = stage_residents(RESIDENT_CSV + ",,,,,,\n\n")
        assert batch.total_records == 3

    def test_rejects_bad_requests(self, importer, write_file, tenant_id, test_actor_id):
        path = write_file("residents.csv", RESIDENT_CSV)
        with pytest.raises(InvalidChoiceError):
            importer.stage(tenant_id, test_actor_id, "invoice", path, RESIDENT_MAPPINGS)
        with pytest.raises(ValidationError):
            importer.stage(tenant_id, test_actor_id, "resident", path, [])
        with pytest.raises(InvalidChoiceError):
            importer.stage(tenant_id, test_actor_id, "resident", path, RESIDENT_MAPPINGS, adapter="xml")

    def test_stage_json_with_path(self, importer, write_file, tenant_id, test_actor_id):
        document = {"export": {"residents": [
            {"First_Name": "Margaret", "Last_Name": "Thompson", "NHS": "9434765919",
             "DOB": "1938-03-14", "Admitted": "2025-01-06", "Fee": 1050},
        ]}}
        path = write_file("export.json", json.dumps(document))
        mappings = [
            {"source": "first_name", "required": True},
            {"source": "last_name", "required": True},
            {"source": "nhs", "target": "nhs_number", "required": True},
            {"source": "dob", "target": "date_of_birth", "field_type": "date", "required": True},
            {"source": "admitted", "target": "admission_date", "field_type": "date", "required": True},
            {"source": "fee", "target": "weekly_fee", "field_type": "decimal"},
        ]
        batch = importer.stage(tenant_id, test_actor_id, "resident", path, mappings,
                               options={"json_path": "export.residents"})
        assert batch.source_format == "json"
        (record,) = importer.list_records(batch.batch_id, tenant_id)
        assert record.mapped_data["nhs_number"] == "9434765919"
        assert record.mapped_data["weekly_fee"] == "1050"

    def test_stage_json_lines(self, importer, write_file, tenant_id, test_actor_id):
        lines = "\n".join(json.dumps({"code": code, "name": name, "type": "asset"})
                          for code, name in (("1000", "Bank"), ("1100", "Petty cash")))
        path = write_file("accounts.jsonl", lines + "\n")
        mappings = [
            FieldMapping("code", "account_code", required=True),
            FieldMapping("name", "account_name", required=True),
            FieldMapping("type", "account_type", required=True),
        ]
        batch = importer.stage(tenant_id, test_actor_id, "ledger_account", path, mappings)
        assert batch.total_records == 2

    def test_stage_xlsx_with_title_block(self, importer, tmp_path, tenant_id, test_actor_id):
        workbook = openpyxl.Workbook()
        sheet = workbook.active
        sheet.append(["Meadow View resident list"])
        sheet.append([])
        sheet.append(["First Name", "Surname", "NHS Number", "Date of Birth", "Admission Date"])
        sheet.append(["Margaret", "Thompson", "943 476 5919", date(1938, 3, 14), date(2025, 1, 6)])
        path = tmp_path / "residents.xlsx"
        workbook.save(path)

        mappings = [
            FieldMapping("First Name", "first_name", required=True),
            FieldMapping("Surname", "last_name", required=True),
            FieldMapping("NHS Number", "nhs_number", required=True),
            FieldMapping("Date of Birth", "date_of_birth", FieldType.DATE, required=True),
            FieldMapping("Admission Date", "admission_date", FieldType.DATE, required=True),
        ]
        batch = importer.stage(tenant_id, test_actor_id, "resident", path, mappings)
        assert batch.source_format == "xlsx"
        (record,) = importer.list_records(batch.batch_id, tenant_id)
        assert record.mapped_data["date_of_birth"] == "1938-03-14"


class TestValidate:
    def test_marks_records(self, stage_residents, importer, tenant_id, test_actor_id):
        staged = stage_residents()
        batch = importer.validate_batch(staged.batch_id, tenant_id, test_actor_id)
        assert batch.status == ImportBatchStatus.VALIDATED
        assert (batch.valid_records, batch.invalid_records) == (2, 1)

        records = _by_row(importer, staged.batch_id, tenant_id)
        assert records[1].status == ImportRecordStatus.VALID
        assert records[3].status == ImportRecordStatus.INVALID
        assert [(e.code, e.field) for e in records[3].errors] == [("INVALID_NHS_NUMBER", "nhs_number")]

    def test_revalidation_allowed(self, stage_residents, importer, tenant_id, test_actor_id):
        staged = stage_residents()
        importer.validate_batch(staged.batch_id, tenant_id, test_actor_id)
        again = importer.validate_batch(staged.batch_id, tenant_id, test_actor_id)
        assert (again.valid_records, again.invalid_records) == (2, 1)

    def test_duplicates_within_batch(self, stage_residents, importer, tenant_id, test_actor_id):
        staged = stage_residents(
            "Forename,Surname,NHS No,DOB,Admitted\n"
            "Margaret,Thompson,943 476 5919,14/03/1938,06/01/2025\n"
            "Maggie,Thompson,9434765919,14/03/1938,06/01/2025\n"
        )
        batch = importer.validate_batch(staged.batch_id, tenant_id, test_actor_id)
        assert batch.invalid_records == 2
        for record in importer.list_records(staged.batch_id, tenant_id):
            assert [e.code for e in record.errors] == ["DUPLICATE_VALUE_IN_BATCH"]

    def test_already_admitted(self, stage_residents, importer, make_resident, tenant_id, test_actor_id):
        make_resident()
        staged = stage_residents()
        importer.validate_batch(staged.batch_id, tenant_id, test_actor_id)
        records = _by_row(importer, staged.batch_id, tenant_id)
        assert [e.code for e in records[1].errors] == ["ALREADY_EXISTS"]
        assert records[2].status == ImportRecordStatus.VALID

    def test_admission_before_birth(self, stage_residents, importer, tenant_id, test_actor_id):
        staged = stage_residents("Forename,Surname,NHS No,DOB,Admitted\n"
                                 "Margaret,Thompson,943 476 5919,14/03/1938,06/01/1930\n")
        importer.validate_batch(staged.batch_id, tenant_id, test_actor_id)
        (record,) = importer.list_records(staged.batch_id, tenant_id)
        assert [(e.code, e.field) for e in record.errors] == [("DATE_ORDER", "admission_date")]

    def test_report(self, stage_residents, importer, tenant_id, test_actor_id):
        staged = stage_residents()
        importer.validate_batch(staged.batch_id, tenant_id, test_actor_id)
        report = importer.get_batch_report(staged.batch_id, tenant_id)
        assert report.status_counts == {"valid": 2, "invalid": 1}
        assert [row for row, _ in report.record_errors] == [3]


class TestPromote:
    def test_promotes_valid_records(self, stage_residents, importer, resident_service, tenant_id,
                                    test_actor_id):
        staged = stage_residents()
        importer.validate_batch(staged.batch_id, tenant_id, test_actor_id)
        result = importer.promote_batch(staged.batch_id, tenant_id, test_actor_id)
        assert (result.attempted, result.promoted, result.failed) == (2, 2, 0)

        batch = importer.get_batch(staged.batch_id, tenant_id)
        assert batch.status == ImportBatchStatus.COMPLETED
        assert batch.promoted_records == 2
        assert batch.completed_at is not None

        records = _by_row(importer, staged.batch_id, tenant_id)
        assert records[3].status == ImportRecordStatus.INVALID
        margaret = resident_service.get_resident(records[1].promoted_entity_id, tenant_id)
        assert margaret.nhs_number == "9434765919"
        assert margaret.date_of_birth == date(1938, 3, 14)
        assert margaret.weekly_fee == Decimal("1050.00")
        assert margaret.allergies == ("Penicillin", "Latex")
        assert records[1].status == ImportRecordStatus.PROMOTED

    def test_record_failure_is_contained(self, stage_residents, importer, make_resident, tenant_id,
                                         test_actor_id, captured_logs):
        staged = stage_residents()
        importer.validate_batch(staged.batch_id, tenant_id, test_actor_id)
        make_resident()
        result = importer.promote_batch(staged.batch_id, tenant_id, test_actor_id)
        assert (result.promoted, result.failed) == (1, 1)
        assert [row for row, _ in result.errors] == [1]

        records = _by_row(importer, staged.batch_id, tenant_id)
        assert records[1].status == ImportRecordStatus.PROMOTION_FAILED
        assert records[1].errors[0].code == DuplicateEntityError.code
        assert records[2].status == ImportRecordStatus.PROMOTED
        assert importer.get_batch(staged.batch_id, tenant_id).failed_records == 1
        assert any(r["message"] == "import_record_promotion_failed" for r in captured_logs())

    def test_must_validate_first(self, stage_residents, importer, tenant_id, test_actor_id):
        staged = stage_residents()
        with pytest.raises(InvalidTransitionError):
            importer.promote_batch(staged.batch_id, tenant_id, test_actor_id)

    def test_promotes_employees(self, importer, write_file, session, deterministic_clock, tenant_id,
                                test_actor_id):
        path = write_file("staff.csv", (
            "Payroll No,First,Last,NI,Start,Salary,Rate\n"
            "E001,Priya,Shah,ab 12 34 56 c,02/09/2024,\"36,000\",\n"
            "E002,Tom,Baker,CE654321A,01/04/2025,,12.60\n"
        ))
        mappings = [
            FieldMapping("Payroll No", "employee_number", required=True),
            FieldMapping("First", "first_name", required=True),
            FieldMapping("Last", "last_name", required=True),
            FieldMapping("NI", "ni_number", required=True, transform="upper"),
            FieldMapping("Start", "start_date", FieldType.DATE, required=True),
            FieldMapping("Salary", "annual_salary", FieldType.DECIMAL),
            FieldMapping("Rate", "hourly_rate", FieldType.DECIMAL),
        ]
        staged = importer.stage(tenant_id, test_actor_id, "employee", path, mappings)
        importer.validate_batch(staged.batch_id, tenant_id, test_actor_id)
        result = importer.promote_batch(staged.batch_id, tenant_id, test_actor_id)
        assert result.promoted == 2

        payroll = PayrollService(session, clock=deterministic_clock)
        records = _by_row(importer, staged.batch_id, tenant_id)
        priya = payroll.get_employee(records[1].promoted_entity_id, tenant_id)
        tom = payroll.get_employee(records[2].promoted_entity_id, tenant_id)
        assert priya.pay_basis == PayBasis.SALARIED
        assert priya.annual_salary == Decimal("36000")
        assert tom.pay_basis == PayBasis.HOURLY
        assert tom.hourly_rate == Decimal("12.60")


class TestRollback:
    def test_rollback_removes_entities(self, stage_residents, importer, resident_service, session,
                                       tenant_id, test_actor_id):
        staged = stage_residents()
        importer.validate_batch(staged.batch_id, tenant_id, test_actor_id)
        importer.promote_batch(staged.batch_id, tenant_id, test_actor_id)
        promoted_ids = [r.promoted_entity_id for r in importer.list_records(
            staged.batch_id, tenant_id, ImportRecordStatus.PROMOTED)]

        batch = importer.rollback_batch(staged.batch_id, tenant_id, test_actor_id)
        assert batch.status == ImportBatchStatus.ROLLED_BACK
        assert batch.promoted_records == 0
        for resident_id in promoted_ids:
            with pytest.raises(ResidentNotFoundError):
                resident_service.get_resident(resident_id, tenant_id)
        records = _by_row(importer, staged.batch_id, tenant_id)
        assert records[1].status == ImportRecordStatus.ROLLED_BACK
        assert records[3].status == ImportRecordStatus.INVALID

        actions = [e.action for e in AuditService(session).list_events(tenant_id, entity_type="ImportBatch")]
        assert actions.count("IMPORT_BATCH_ROLLED_BACK") == 1

    def test_rollback_blocked_by_dependents(self, stage_residents, importer, session,
                                            deterministic_clock, tenant_id, test_actor_id):
        staged = stage_residents()
        importer.validate_batch(staged.batch_id, tenant_id, test_actor_id)
        importer.promote_batch(staged.batch_id, tenant_id, test_actor_id)
        margaret_id = _by_row(importer, staged.batch_id, tenant_id)[1].promoted_entity_id
        BillingService(session, clock=deterministic_clock).generate_resident_bill(
            tenant_id, test_actor_id, margaret_id, date(2025, 6, 1), date(2025, 6, 30),
        )

        batch = importer.rollback_batch(staged.batch_id, tenant_id, test_actor_id)
        assert batch.status == ImportBatchStatus.COMPLETED
        assert batch.promoted_records == 1
        records = _by_row(importer, staged.batch_id, tenant_id)
        assert records[1].status == ImportRecordStatus.PROMOTED
        assert records[1].errors[0].code == "BUSINESS_RULE_VIOLATION"
        assert records[2].status == ImportRecordStatus.ROLLED_BACK

    def test_ledger_children_removed_before_parents(self, importer, write_file, session,
                                                    deterministic_clock, tenant_id, test_actor_id):
        path = write_file("coa.csv", (
            "Code,Name,Type,Parent\n"
            "4000,Fee income,REVENUE,\n"
            "4010,Self-funded fees,Revenue,4000\n"
            "4020,Local authority fees,revenue,4000\n"
        ))
        mappings = [
            FieldMapping("Code", "account_code", required=True),
            FieldMapping("Name", "account_name", required=True),
            FieldMapping("Type", "account_type", required=True, transform="lower"),
            FieldMapping("Parent", "parent_account_code"),
        ]
        staged = importer.stage(tenant_id, test_actor_id, "ledger_account", path, mappings)
        importer.validate_batch(staged.batch_id, tenant_id, test_actor_id)
        assert importer.promote_batch(staged.batch_id, tenant_id, test_actor_id).promoted == 3

        ledger = LedgerAccountService(session, clock=deterministic_clock)
        child = ledger.get_account_by_code(tenant_id, "4010")
        assert child.level == 1
        assert child.parent_account_id == ledger.get_account_by_code(tenant_id, "4000").id

        batch = importer.rollback_batch(staged.batch_id, tenant_id, test_actor_id)
        assert batch.status == ImportBatchStatus.ROLLED_BACK
        with pytest.raises(LedgerAccountNotFoundError):
            ledger.get_account_by_code(tenant_id, "4000")

    def test_only_completed_batches(self, stage_residents, importer, tenant_id, test_actor_id):
        staged = stage_residents()
        importer.validate_batch(staged.batch_id, tenant_id, test_actor_id)
        with pytest.raises(InvalidTransitionError):
            importer.rollback_batch(staged.batch_id, tenant_id, test_actor_id)


class TestReadsAndIsolation:
    def test_unknown_batch(self, importer, tenant_id):
        with pytest.raises(ImportBatchNotFoundError):
            importer.get_batch(uuid4(), tenant_id)

    def test_other_tenant(self, stage_residents, importer, other_tenant_id, test_actor_id):
        staged = stage_residents()
        with pytest.raises(TenantIsolationError):
            importer.get_batch(staged.batch_id, other_tenant_id)
        with pytest.raises(TenantIsolationError):
            importer.validate_batch(staged.batch_id, other_tenant_id, test_actor_id)
        assert importer.list_batches(other_tenant_id) == []

    def test_list_batches_by_entity(self, stage_residents, importer, write_file, tenant_id,
                                    test_actor_id, deterministic_clock):
        stage_residents()
        deterministic_clock.advance(60)
        path = write_file("coa.csv", "Code,Name,Type\n1000,Bank,asset\n")
        importer.stage(tenant_id, test_actor_id, "ledger_account", path, [
            FieldMapping("Code", "account_code"), FieldMapping("Name", "account_name"),
            FieldMapping("Type", "account_type"),
        ])
        assert len(importer.list_batches(tenant_id)) == 2
        assert [b.entity_type for b in importer.list_batches(tenant_id, entity_type="resident")] == ["resident"]

    def test_filter_records_by_status(self, stage_residents, importer, tenant_id, test_actor_id):
        staged = stage_residents()
        importer.validate_batch(staged.batch_id, tenant_id, test_actor_id)
        invalid = importer.list_records(staged.batch_id, tenant_id, ImportRecordStatus.INVALID)
        assert [r.source_row for r in invalid] == [3]
