from .booking import (
	ADMITTED,
	RejectionReason,
	RuleCheckResult,
	Stay,
	StayStore,
	StayValidationError,
	check_admission,
	check_extension,
	clashes_at_check_in,
	overlaps_stay_window,
	parse_check_in,
)
from .yaml_store import (
	StayConflictError,
	StayEventType,
	StayNotFoundError,
	StayRecord,
	StayStorageError,
	StayYamlRepository,
	book_stay,
	extend_stay,
)

__all__ = [
	"ADMITTED",
	"RejectionReason",
	"RuleCheckResult",
	"Stay",
	"StayStore",
	"StayValidationError",
	"check_admission",
	"check_extension",
	"clashes_at_check_in",
	"overlaps_stay_window",
	"parse_check_in",
	"StayConflictError",
	"StayEventType",
	"StayNotFoundError",
	"StayRecord",
	"StayStorageError",
	"StayYamlRepository",
	"book_stay",
	"extend_stay",
]
