"""Virtual code generation for freshly produced lots."""

from __future__ import annotations

import hashlib
import logging
from typing import Dict, Iterable, List, Set

from ...errors import GenerationExhausted
from ...models import VirtualCode, VirtualCodeStatus, db
from ...rules import VIRTUAL_CODE_CHARSET, VIRTUAL_CODE_LENGTH, TraceabilityRules
from ...utils.error_messages import ErrorMessages as EM

logger = logging.getLogger(__name__)

# Stay under SQLite's bound-parameter limit when probing for existing codes.
_LOOKUP_CHUNK = 900


def derive_code(lot_id: int, sequence: int, salt: str, attempt: int) -> str:
    """MD5 of ``lot:sequence:salt:attempt`` folded onto A-Z0-9, first 12 characters."""
    seed = f"{lot_id}:{sequence}:{salt}:{attempt}".encode("utf-8")
    digest = hashlib.md5(seed).digest()
    return "".join(VIRTUAL_CODE_CHARSET[b % len(VIRTUAL_CODE_CHARSET)] for b in digest)[:VIRTUAL_CODE_LENGTH]


def _existing_codes(candidates: Iterable[str]) -> Set[str]:
    values = list(candidates)
    found: Set[str] = set()
    for start in range(0, len(values), _LOOKUP_CHUNK):
        chunk = values[start:start + _LOOKUP_CHUNK]
        rows = db.session.query(VirtualCode.code).filter(VirtualCode.code.in_(chunk)).all()
        found.update(row[0] for row in rows)
    return found


class VirtualCodeGenerator:
    def __init__(self, rules: TraceabilityRules):
        self.rules = rules

    def generate(self, lot, quantity: int) -> List[VirtualCode]:
        """
        Build ``quantity`` unsaved VirtualCode rows for ``lot`` (which must be flushed).

        Each unit starts at attempt 0; a unit whose candidate collides with a
        persisted code or another unit in the batch moves to the next attempt.
        A unit that is still colliding after ``code_max_attempts`` raises
        GenerationExhausted.
        """
        max_attempts = self.rules.code_max_attempts
        salt = self.rules.code_salt

        attempts: Dict[int, int] = {sequence: 0 for sequence in range(1, quantity + 1)}
        accepted: Dict[int, str] = {}
        taken: Set[str] = set()
        unresolved = sorted(attempts)

        while unresolved:
            candidates = {seq: derive_code(lot.id, seq, salt, attempts[seq]) for seq in unresolved}
            persisted = _existing_codes(set(candidates.values()))

            retry = []
            for seq in unresolved:
                code = candidates[seq]
                if code in persisted or code in taken:
                    attempts[seq] += 1
                    if attempts[seq] >= max_attempts:
                        logger.error("Code space exhausted for lot %s sequence %s", lot.id, seq)
                        raise GenerationExhausted(
                            EM.CODE_SPACE_EXHAUSTED.format(lot_id=lot.id, sequence=seq, attempts=max_attempts),
                            details={"lot_id": lot.id, "sequence": seq},
                        )
                    retry.append(seq)
                    continue
                accepted[seq] = code
                taken.add(code)

            if retry:
                logger.debug("Lot %s: %s code collision(s), retrying with next salt", lot.id, len(retry))
            unresolved = retry

        return [
            VirtualCode(
                code=accepted[seq],
                lot_id=lot.id,
                product_id=lot.product_id,
                sequence_number=seq,
                owner_id=lot.organization_id,
                status=VirtualCodeStatus.IN_STOCK,
            )
            for seq in sorted(accepted)
        ]
