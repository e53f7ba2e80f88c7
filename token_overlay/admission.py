"""Per-transaction admission of token outputs."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import List, Optional, Sequence, Union

from .models import LayoutVersion, TokenCandidate, TokenRecord, TransactionOutput
from .script_codec import DecodeError, decode_pushdrop
from .validator import FIELD_LAYOUTS, FieldValidator, RejectionCode, RejectionReason

logger = logging.getLogger(__name__)

DEFAULT_LAYOUTS = (LayoutVersion.B, LayoutVersion.A)


@dataclass(frozen=True)
class AdmittedOutput:
    output_index: int
    candidate: TokenCandidate


@dataclass(frozen=True)
class OutputDiagnostic:
    """Why one output was skipped; kept for callers that want to report it."""

    output_index: int
    layout: Optional[LayoutVersion]
    reason: Union[DecodeError, RejectionReason, str]


@dataclass
class AdmissionResult:
    admitted: List[AdmittedOutput] = field(default_factory=list)
    diagnostics: List[OutputDiagnostic] = field(default_factory=list)

    @property
    def outputs_to_admit(self) -> List[int]:
        return sorted(item.output_index for item in self.admitted)

    def records(self, txid: str, outputs: Sequence[TransactionOutput]) -> List[TokenRecord]:
        """Build index records for every admitted output of ``txid``."""

        return [
            TokenRecord.from_candidate(txid, item.output_index, item.candidate, outputs[item.output_index])
            for item in self.admitted
        ]


class AdmissionEngine:
    """Decode and validate every output of a transaction.

    A failing output never stops the scan; it is logged and recorded as a
    diagnostic. Layouts are tried in order and the first one producing a
    candidate wins.
    """

    def __init__(
        self,
        validator: FieldValidator,
        layouts: Sequence[LayoutVersion] = DEFAULT_LAYOUTS,
    ) -> None:
        if not layouts:
            raise ValueError("AdmissionEngine requires at least one layout")
        self.validator = validator
        self.layouts = tuple(dict.fromkeys(layouts))

    def identify_admissible(
        self, outputs: Sequence[TransactionOutput], txid: Optional[str] = None
    ) -> AdmissionResult:
        label = txid or "<unknown>"
        result = AdmissionResult()
        for index, output in enumerate(outputs):
            try:
                outcome = self._evaluate(output)
            except Exception as exc:  # one bad output must not stop the scan
                logger.exception("Unexpected error evaluating output %s:%d", label, index)
                result.diagnostics.append(OutputDiagnostic(index, None, f"internal error: {exc}"))
                continue

            if isinstance(outcome, TokenCandidate):
                logger.debug(
                    "Output %s:%d accepted (layout %s, token %s, amount %d)",
                    label,
                    index,
                    outcome.layout.value,
                    outcome.token_id_hex,
                    outcome.amount,
                )
                result.admitted.append(AdmittedOutput(index, outcome))
            else:
                layout, reason = outcome
                logger.debug("Output %s:%d rejected: %s", label, index, reason)
                result.diagnostics.append(OutputDiagnostic(index, layout, reason))

        if result.admitted:
            logger.info(
                "Transaction %s: %d of %d outputs admissible", label, len(result.admitted), len(outputs)
            )
        return result

    def _evaluate(
        self, output: TransactionOutput
    ) -> Union[TokenCandidate, tuple[LayoutVersion, Union[DecodeError, RejectionReason]]]:
        failure: Optional[tuple[LayoutVersion, Union[DecodeError, RejectionReason]]] = None
        for layout in self.layouts:
            decoded = decode_pushdrop(
                output.locking_script, layout, min_fields=FIELD_LAYOUTS[layout].min_script_fields
            )
            if isinstance(decoded, DecodeError):
                failure = failure or (layout, decoded)
                continue
            verdict = self.validator.validate_script(decoded)
            if isinstance(verdict, TokenCandidate):
                return verdict
            # a bare field-count miss says less than a decode failure under another layout
            if failure is None or verdict.code is not RejectionCode.FIELD_COUNT:
                failure = (layout, verdict)
        if failure is None:
            raise RuntimeError("No script layouts configured")
        return failure
