"""
X12 EDI Base Parser and Models.

Provides core X12 functionality shared by the 270 builder and 271 reader:
- Tokenizer for segment/element parsing
- Segment and interchange models
- Date helpers and element sanitizing
- Control number generation
"""

import re
import secrets
import threading
import time
from collections import deque
from dataclasses import dataclass
from datetime import date, datetime
from enum import Enum
from typing import List, Optional, Tuple

from x12_eligibility.utils.errors import MalformedResponseError
from x12_eligibility.utils.logging import get_logger

logger = get_logger(__name__)


# =============================================================================
# Enums
# =============================================================================


class TransactionType(str, Enum):
    """X12 transaction set types seen on the eligibility exchange."""

    ELIG_270 = "270"  # Eligibility Request
    ELIG_271 = "271"  # Eligibility Response
    ACK_999 = "999"  # Implementation Acknowledgment
    ACK_997 = "997"  # Functional Acknowledgment
    ACK_TA1 = "TA1"  # Interchange Acknowledgment


# =============================================================================
# Exceptions
# =============================================================================


class X12ParseError(MalformedResponseError):
    """X12 content could not be tokenized, with segment context."""

    def __init__(
        self,
        message: str,
        segment_id: Optional[str] = None,
        segment_position: Optional[int] = None,
        raw_segment: Optional[str] = None,
    ):
        self.segment_id = segment_id
        self.segment_position = segment_position
        self.raw_segment = raw_segment
        parts = [message]
        if segment_id:
            parts.append(f"Segment: {segment_id}")
        if segment_position is not None:
            parts.append(f"Position: {segment_position}")
        super().__init__(" | ".join(parts), response_type="unparseable")


# =============================================================================
# Data Models
# =============================================================================


@dataclass
class X12Segment:
    """
    Represents a single X12 segment.

    Example: NM1*IL*1*DOE*JOHN****MI*12345~
    - segment_id: NM1
    - elements: ['IL', '1', 'DOE', 'JOHN', '', '', '', 'MI', '12345']
    """

    segment_id: str
    elements: List[str]
    position: int = 0

    def get_element(self, index: int, default: str = "") -> str:
        """Get element at index (0-based after segment ID)."""
        if 0 <= index < len(self.elements):
            return self.elements[index]
        return default

    def get_repeated(self, index: int, separator: str = "^") -> List[str]:
        """Get a repeating element (e.g. EB03 service types) as a list."""
        value = self.get_element(index)
        if value:
            return [part for part in value.split(separator) if part]
        return []

    def __str__(self) -> str:
        return f"{self.segment_id}*{'*'.join(self.elements)}"


@dataclass
class X12Envelope:
    """X12 interchange envelope (ISA/IEA) control information."""

    sender_id: str
    sender_qualifier: str
    receiver_id: str
    receiver_qualifier: str
    control_number: str
    date: str
    time: str
    usage_indicator: str = "P"

    @classmethod
    def from_isa_segment(cls, segment: X12Segment) -> "X12Envelope":
        """Parse ISA segment into envelope."""
        return cls(
            sender_qualifier=segment.get_element(4),
            sender_id=segment.get_element(5).strip(),
            receiver_qualifier=segment.get_element(6),
            receiver_id=segment.get_element(7).strip(),
            date=segment.get_element(8),
            time=segment.get_element(9),
            control_number=segment.get_element(12),
            usage_indicator=segment.get_element(14),
        )


# =============================================================================
# Tokenizer
# =============================================================================


class X12Tokenizer:
    """
    X12 EDI tokenizer.

    Handles parsing of raw X12 content into segments and elements.
    Automatically detects delimiters from ISA segment.
    """

    DEFAULT_ELEMENT_SEPARATOR = "*"
    DEFAULT_SEGMENT_TERMINATOR = "~"
    DEFAULT_COMPONENT_SEPARATOR = ":"
    DEFAULT_REPETITION_SEPARATOR = "^"

    def __init__(self):
        self.element_separator = self.DEFAULT_ELEMENT_SEPARATOR
        self.segment_terminator = self.DEFAULT_SEGMENT_TERMINATOR
        self.component_separator = self.DEFAULT_COMPONENT_SEPARATOR
        self.repetition_separator = self.DEFAULT_REPETITION_SEPARATOR

    def detect_delimiters(self, content: str) -> Tuple[str, str, str, str]:
        """
        Detect delimiters from ISA segment.

        ISA is always 106 characters with fixed positions:
        - Element separator: position 3
        - Component separator: position 104
        - Segment terminator: position 105
        """
        if not content.startswith("ISA"):
            raise X12ParseError("Content must start with ISA segment")

        if len(content) < 106:
            raise X12ParseError("ISA segment must be at least 106 characters", segment_id="ISA")

        element_sep = content[3]
        component_sep = content[104]
        segment_term = content[105]

        isa_elements = content[:105].split(element_sep)
        if len(isa_elements) >= 12 and len(isa_elements[11]) == 1:
            rep_sep = isa_elements[11]
        else:
            rep_sep = self.DEFAULT_REPETITION_SEPARATOR

        return element_sep, segment_term, component_sep, rep_sep

    def tokenize(self, content: str) -> List[X12Segment]:
        """
        Tokenize X12 content into segments.

        Content that does not start with ISA (a bare transaction set) is
        split with the default delimiters.
        """
        if content is None:
            raise X12ParseError("No content provided to tokenize")

        content = content.strip()
        if not content:
            raise X12ParseError("Empty X12 content")

        if content.startswith("ISA"):
            (
                self.element_separator,
                self.segment_terminator,
                self.component_separator,
                self.repetition_separator,
            ) = self.detect_delimiters(content)

        segments = []
        for position, raw in enumerate(content.split(self.segment_terminator)):
            # Clearinghouses often wrap each segment onto its own line
            raw = raw.replace("\n", "").replace("\r", "").strip()
            if not raw:
                continue

            elements = raw.split(self.element_separator)
            segments.append(
                X12Segment(
                    segment_id=elements[0],
                    elements=elements[1:],
                    position=position,
                )
            )

        return segments

    def get_transaction_type(self, segments: List[X12Segment]) -> Optional[TransactionType]:
        """Determine transaction type from the first ST (or a bare TA1)."""
        for segment in segments:
            if segment.segment_id == "ST":
                code = segment.get_element(0)
                try:
                    return TransactionType(code)
                except ValueError:
                    logger.warning(f"Unexpected transaction set id: {code}")
                    return None
        if any(segment.segment_id == "TA1" for segment in segments):
            return TransactionType.ACK_TA1
        return None


# =============================================================================
# Control Numbers
# =============================================================================


class ControlNumberGenerator:
    """
    Issues 9-digit interchange control numbers.

    Numbers are derived from the millisecond clock plus random entropy, and a
    window of recently issued values guarantees that concurrent callers
    (even within the same millisecond) never receive the same number.
    """

    MODULUS = 1_000_000_000

    def __init__(self, window: int = 100_000, clock=time.time_ns):
        self._lock = threading.Lock()
        self._recent: deque[int] = deque(maxlen=window)
        self._issued: set[int] = set()
        self._clock = clock

    def _candidate(self) -> int:
        millis = self._clock() // 1_000_000
        return ((millis % 1_000_000) * 1000 + secrets.randbelow(1000)) % self.MODULUS

    def next(self) -> str:
        with self._lock:
            candidate = self._candidate()
            while candidate == 0 or candidate in self._issued:
                candidate = (candidate + 1) % self.MODULUS
            if len(self._recent) == self._recent.maxlen:
                self._issued.discard(self._recent[0])
            self._recent.append(candidate)
            self._issued.add(candidate)
        return str(candidate).zfill(9)


# Generators built without an explicit ControlNumberGenerator share this one,
# so uniqueness holds across every service in the process
_shared_control_numbers = ControlNumberGenerator()


def shared_control_numbers() -> ControlNumberGenerator:
    """The process-wide control number generator."""
    return _shared_control_numbers


# =============================================================================
# Utility Functions
# =============================================================================

_DELIMITER_RE = re.compile(r"[*~^:\r\n]")


def sanitize_element(value: Optional[str], max_length: Optional[int] = None) -> str:
    """Strip X12 delimiter characters and surrounding whitespace from a data element."""
    if not value:
        return ""
    cleaned = _DELIMITER_RE.sub("", value).strip()
    cleaned = re.sub(r"\s{2,}", " ", cleaned)
    if max_length is not None:
        cleaned = cleaned[:max_length]
    return cleaned


def parse_x12_date(date_str: str) -> Optional[date]:
    """
    Parse X12 date format (CCYYMMDD or YYMMDD).

    Args:
        date_str: Date string in X12 format

    Returns:
        Python date object or None
    """
    if not date_str:
        return None

    try:
        if len(date_str) == 8:
            return datetime.strptime(date_str, "%Y%m%d").date()
        elif len(date_str) == 6:
            year = int(date_str[:2])
            if year < 50:
                year += 2000
            else:
                year += 1900
            return date(year, int(date_str[2:4]), int(date_str[4:6]))
    except ValueError:
        logger.debug(f"Unparseable X12 date: {date_str}")

    return None


def parse_x12_date_range(value: str) -> Tuple[Optional[date], Optional[date]]:
    """Parse an RD8 range (CCYYMMDD-CCYYMMDD); a single date yields (d, d)."""
    if "-" in value:
        start, _, end = value.partition("-")
        return parse_x12_date(start), parse_x12_date(end)
    single = parse_x12_date(value)
    return single, single


def format_x12_date(d: date) -> str:
    """Format date as X12 CCYYMMDD."""
    return d.strftime("%Y%m%d")


def format_x12_time(t: datetime) -> str:
    """Format time as X12 HHMM."""
    return t.strftime("%H%M")


def validate_npi(npi: str) -> bool:
    """
    Validate NPI using Luhn algorithm.

    NPI is a 10-digit identifier for healthcare providers.
    """
    if not npi or len(npi) != 10:
        return False

    if not npi.isdigit():
        return False

    # Apply Luhn algorithm with healthcare prefix (80840)
    prefix = "80840"
    full_number = prefix + npi

    total = 0
    for i, digit in enumerate(reversed(full_number)):
        d = int(digit)
        if i % 2 == 0:
            total += d
        else:
            doubled = d * 2
            total += doubled if doubled < 10 else doubled - 9

    return total % 10 == 0
