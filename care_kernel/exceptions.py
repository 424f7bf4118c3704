"""
Typed Exception Hierarchy for the Care Kernel.

===============================================================================
WHY TYPED EXCEPTIONS
===============================================================================

Every error raised by a service is a typed exception that carries:
  1. a ``code`` class attribute (machine-readable, API-safe)
  2. an ``http_status`` class attribute (how the REST layer reports it)
  3. structured attributes (entity ids, offending values)

The REST layer never inspects message text.  It maps the exception's
``http_status`` and ``code`` straight into the error envelope:

    {"success": false, "error": {"code": "RESIDENT_NOT_FOUND", "message": "..."}}

===============================================================================
EXCEPTION HIERARCHY
===============================================================================

    CareKernelError (500)
    |
    +-- ValidationError (400)
    |   +-- InvalidNINumberError, InvalidPhoneNumberError, InvalidEmailError,
    |   |   InvalidNHSNumberError, InvalidPostcodeError, InvalidSortCodeError,
    |   |   InvalidTaxCodeError, InvalidChoiceError
    |   +-- ConsentRequiredError
    |
    +-- AuthenticationError (401)
    +-- AuthorizationError (403)
    |   +-- TenantIsolationError
    |   +-- TenantSuspendedError
    |
    +-- NotFoundError (404)
    |   +-- <Entity>NotFoundError (one per aggregate)
    |
    +-- ConflictError (409)
    |   +-- DuplicateEntityError
    |   +-- InvalidTransitionError
    |
    +-- BusinessRuleError (422)
        +-- SystemAccountError, AccountHasChildrenError,
        |   AccountHasBalanceError, AccountHasTransactionsError,
        |   InactiveAccountError
        +-- OverpaymentError
        +-- PRNIntervalError

===============================================================================
"""

from typing import Any


class CareKernelError(Exception):
    """
    Base exception for all care kernel and care module errors.

    Every subclass sets ``code`` and ``http_status``.
    """

    code: str = "INTERNAL_ERROR"
    http_status: int = 500

    @property
    def message(self) -> str:
        return str(self)


# Validation (400)


class ValidationError(CareKernelError):
    """Input failed a presence, format or range check."""

    code: str = "VALIDATION_ERROR"
    http_status: int = 400

    def __init__(self, message: str, field: str | None = None):
        self.field = field
        super().__init__(message)


class InvalidNINumberError(ValidationError):
    code: str = "INVALID_NI_NUMBER"

    def __init__(self, value: str):
        self.value = value
        super().__init__(f"Invalid National Insurance number: {value!r}", "ni_number")


class InvalidPhoneNumberError(ValidationError):
    code: str = "INVALID_PHONE_NUMBER"

    def __init__(self, value: str):
        self.value = value
        super().__init__(f"Invalid UK phone number: {value!r}", "phone")


class InvalidEmailError(ValidationError):
    code: str = "INVALID_EMAIL"

    def __init__(self, value: str):
        self.value = value
        super().__init__(f"Invalid email address: {value!r}", "email")


class InvalidNHSNumberError(ValidationError):
    code: str = "INVALID_NHS_NUMBER"

    def __init__(self, value: str):
        self.value = value
        super().__init__(f"Invalid NHS number: {value!r}", "nhs_number")


class InvalidPostcodeError(ValidationError):
    code: str = "INVALID_POSTCODE"

    def __init__(self, value: str):
        self.value = value
        super().__init__(f"Invalid UK postcode: {value!r}", "postcode")


class InvalidSortCodeError(ValidationError):
    code: str = "INVALID_SORT_CODE"

    def __init__(self, value: str):
        self.value = value
        super().__init__(f"Invalid sort code: {value!r}", "sort_code")


class InvalidTaxCodeError(ValidationError):
    code: str = "INVALID_TAX_CODE"

    def __init__(self, value: str):
        self.value = value
        super().__init__(f"Unrecognised tax code: {value!r}", "tax_code")


class InvalidChoiceError(ValidationError):
    code: str = "INVALID_CHOICE"

    def __init__(self, field: str, value: Any, allowed: tuple[str, ...] | list[str]):
        self.value = value
        self.allowed = tuple(sorted(allowed))
        super().__init__(
            f"{field} must be one of {', '.join(self.allowed)}; got {value!r}", field
        )


class ConsentRequiredError(ValidationError):
    """Processing requires a consent flag the subject has not given."""

    code: str = "CONSENT_REQUIRED"

    def __init__(self, subject: str, purpose: str):
        self.subject = subject
        self.purpose = purpose
        super().__init__(f"Consent for {purpose} not given by {subject}", "consent")


# Authentication / authorization (401 / 403)


class AuthenticationError(CareKernelError):
    code: str = "UNAUTHENTICATED"
    http_status: int = 401

    def __init__(self, message: str = "Missing or invalid bearer token"):
        super().__init__(message)


class AuthorizationError(CareKernelError):
    code: str = "FORBIDDEN"
    http_status: int = 403

    def __init__(self, message: str = "Insufficient role for this operation",
                 required_roles: tuple[str, ...] = ()):
        self.required_roles = required_roles
        super().__init__(message)


class TenantIsolationError(AuthorizationError):
    """An entity belonging to one tenant was addressed from another."""

    code: str = "TENANT_ISOLATION_VIOLATION"

    def __init__(self, entity_type: str, entity_id: Any):
        self.entity_type = entity_type
        self.entity_id = str(entity_id)
        super().__init__(f"{entity_type} {entity_id} is not accessible from this tenant")


class TenantSuspendedError(AuthorizationError):
    code: str = "TENANT_SUSPENDED"

    def __init__(self, tenant_id: Any):
        self.tenant_id = str(tenant_id)
        super().__init__(f"Tenant {tenant_id} is not active")


# Not found (404)


class NotFoundError(CareKernelError):
    """An entity with the given id does not exist within the tenant."""

    code: str = "NOT_FOUND"
    http_status: int = 404
    entity_type: str = "Entity"

    def __init__(self, entity_id: Any):
        self.entity_id = str(entity_id)
        super().__init__(f"{self.entity_type} not found: {entity_id}")


class TenantNotFoundError(NotFoundError):
    code = "TENANT_NOT_FOUND"
    entity_type = "Tenant"


class CareHomeNotFoundError(NotFoundError):
    code = "CARE_HOME_NOT_FOUND"
    entity_type = "CareHome"


class EmployeeNotFoundError(NotFoundError):
    code = "EMPLOYEE_NOT_FOUND"
    entity_type = "Employee"


class PayrollRunNotFoundError(NotFoundError):
    code = "PAYROLL_RUN_NOT_FOUND"
    entity_type = "PayrollRun"


class ResidentNotFoundError(NotFoundError):
    code = "RESIDENT_NOT_FOUND"
    entity_type = "Resident"


class BillNotFoundError(NotFoundError):
    code = "BILL_NOT_FOUND"
    entity_type = "Bill"


class BudgetNotFoundError(NotFoundError):
    code = "BUDGET_NOT_FOUND"
    entity_type = "Budget"


class LedgerAccountNotFoundError(NotFoundError):
    code = "ACCOUNT_NOT_FOUND"
    entity_type = "LedgerAccount"


class MedicationNotFoundError(NotFoundError):
    code = "MEDICATION_NOT_FOUND"
    entity_type = "Medication"


class DoseNotFoundError(NotFoundError):
    code = "DOSE_NOT_FOUND"
    entity_type = "ScheduledDose"


class PilotNotFoundError(NotFoundError):
    code = "PILOT_NOT_FOUND"
    entity_type = "Pilot"


class RecommendationNotFoundError(NotFoundError):
    code = "RECOMMENDATION_NOT_FOUND"
    entity_type = "AgentRecommendation"


class FamilyMemberNotFoundError(NotFoundError):
    code = "FAMILY_MEMBER_NOT_FOUND"
    entity_type = "FamilyMember"


class ImportBatchNotFoundError(NotFoundError):
    code = "IMPORT_BATCH_NOT_FOUND"
    entity_type = "ImportBatch"


# Conflict (409)


class ConflictError(CareKernelError):
    code: str = "CONFLICT"
    http_status: int = 409


class DuplicateEntityError(ConflictError):
    """A unique business key is already taken within the tenant."""

    code: str = "DUPLICATE_ENTITY"

    def __init__(self, entity_type: str, field: str, value: Any):
        self.entity_type = entity_type
        self.field = field
        self.value = str(value)
        super().__init__(f"{entity_type} with {field}={value!r} already exists")


class InvalidTransitionError(ConflictError):
    """A workflow action is not allowed from the entity's current state."""

    code: str = "INVALID_STATE_TRANSITION"

    def __init__(self, entity_type: str, from_state: str, action: str):
        self.entity_type = entity_type
        self.from_state = from_state
        self.action = action
        super().__init__(
            f"Cannot {action} {entity_type} in state {from_state!r}"
        )


# Business rules (422)


class BusinessRuleError(CareKernelError):
    code: str = "BUSINESS_RULE_VIOLATION"
    http_status: int = 422


class SystemAccountError(BusinessRuleError):
    code: str = "SYSTEM_ACCOUNT_PROTECTED"

    def __init__(self, account_code: str, operation: str):
        self.account_code = account_code
        self.operation = operation
        super().__init__(f"System account {account_code} cannot be {operation}")


class AccountHasChildrenError(BusinessRuleError):
    code: str = "ACCOUNT_HAS_CHILDREN"

    def __init__(self, account_code: str, operation: str):
        self.account_code = account_code
        self.operation = operation
        super().__init__(f"Account {account_code} has child accounts and cannot be {operation}")


class AccountHasBalanceError(BusinessRuleError):
    code: str = "ACCOUNT_HAS_BALANCE"

    def __init__(self, account_code: str, balance: Any, operation: str):
        self.account_code = account_code
        self.balance = str(balance)
        self.operation = operation
        super().__init__(
            f"Account {account_code} has non-zero balance {balance} and cannot be {operation}"
        )


class AccountHasTransactionsError(BusinessRuleError):
    code: str = "ACCOUNT_HAS_TRANSACTIONS"

    def __init__(self, account_code: str):
        self.account_code = account_code
        super().__init__(f"Account {account_code} has transactions and cannot be deleted")


class InactiveAccountError(BusinessRuleError):
    code: str = "ACCOUNT_INACTIVE"

    def __init__(self, account_code: str):
        self.account_code = account_code
        super().__init__(f"Account {account_code} is not active")


class OverpaymentError(BusinessRuleError):
    code: str = "OVERPAYMENT"

    def __init__(self, bill_number: str, amount: Any, outstanding: Any):
        self.bill_number = bill_number
        self.amount = str(amount)
        self.outstanding = str(outstanding)
        super().__init__(
            f"Payment {amount} exceeds outstanding {outstanding} on bill {bill_number}"
        )


class PRNIntervalError(BusinessRuleError):
    """A PRN dose was attempted before its minimum interval elapsed."""

    code: str = "PRN_INTERVAL_NOT_ELAPSED"

    def __init__(self, medication_id: Any, next_available: Any):
        self.medication_id = str(medication_id)
        self.next_available = str(next_available)
        super().__init__(
            f"PRN medication {medication_id} not available until {next_available}"
        )
