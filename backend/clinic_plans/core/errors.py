from __future__ import annotations


class TreatmentPlanError(Exception):
    """Base class for treatment plan domain failures.

    Every subclass carries a stable ``code`` so the HTTP layer and callers can
    branch on the failure kind without parsing messages.
    """

    code = "TREATMENT_PLAN_ERROR"
    retryable = False

    def __init__(self, message: str, *, code: str | None = None) -> None:
        super().__init__(message)
        self.message = message
        if code:
            self.code = code


class ValidationError(TreatmentPlanError):
    code = "VALIDATION_ERROR"


class DuplicateSequenceNumber(ValidationError):
    code = "DUPLICATE_SEQUENCE_NUMBER"


class CyclicPrerequisite(ValidationError):
    code = "CYCLIC_PREREQUISITE"


class InvalidQuantity(ValidationError):
    code = "INVALID_QUANTITY"


class NegativePrice(ValidationError):
    code = "NEGATIVE_PRICE"


class InvalidStateTransition(TreatmentPlanError):
    code = "INVALID_STATE_TRANSITION"


class ItemLocked(InvalidStateTransition):
    code = "ITEM_LOCKED"


class StaleState(TreatmentPlanError):
    code = "STALE_STATE"


class SlotConflict(TreatmentPlanError):
    code = "SLOT_CONFLICT"
    retryable = True


class PrerequisiteNotMet(TreatmentPlanError):
    code = "PREREQUISITE_NOT_MET"


class PlanNotFound(TreatmentPlanError):
    code = "NOT_FOUND"


class OperationCancelled(TreatmentPlanError):
    code = "OPERATION_CANCELLED"
