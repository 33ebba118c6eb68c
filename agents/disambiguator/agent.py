"""
Disambiguator Agent Module

Picks exactly one candidate when an entity reference matched several rows.
The model only ever chooses among ids it was shown; anything else is an
ambiguity failure.
"""

import json
import logging
from typing import Any, Dict, List, Mapping, Optional, Union

from agents.base import Agent
from core.errors import AmbiguousReferenceError, ExtractionError
from core.schemas import MAX_CANDIDATES, Candidate, CandidateSet, normalize_candidates
from services.llm_service import GenerativeModel
from services.validation_engine import ValidationEngine

logger = logging.getLogger(__name__)


class DisambiguatorAgent(Agent):
    def __init__(
        self,
        model: GenerativeModel,
        validator: Optional[ValidationEngine] = None,
        max_candidates: int = MAX_CANDIDATES,
    ):
        self.model = model
        self.validator = validator or ValidationEngine()
        self.max_candidates = max_candidates

    async def run(self, payload: CandidateSet, context: Dict[str, Any]):
        return await self.select(
            context.get("instruction", ""),
            payload.reference.type,
            payload.candidates,
            payload.reference.properties,
        )

    @staticmethod
    def _simplify(candidate: Candidate) -> Dict[str, Any]:
        item = {"id": str(candidate.id), "name": candidate.display_name}
        for key, value in candidate.attributes.items():
            if key in ("id", "name") or value in (None, ""):
                continue
            item[key] = value
        return item

    def build_prompt(
        self,
        instruction: str,
        entity_type: str,
        candidates: List[Candidate],
        properties: Mapping[str, Any],
    ) -> str:
        items = [self._simplify(c) for c in candidates]
        return (
            f'The user\'s original request was: "{instruction}"\n\n'
            f"Several {entity_type} records match. Each has an 'id', a 'name' and other values.\n\n"
            f"Available items (JSON array):\n{json.dumps(items, indent=2, default=str, ensure_ascii=False)}\n\n"
            f"The {entity_type} to identify has these properties (JSON object):\n"
            f"{json.dumps(dict(properties), indent=2, default=str, ensure_ascii=False)}\n\n"
            "Return the 'id' of the single best matching item from the list as selectedId. "
            "If no item clearly matches, return null."
        )

    async def select(
        self,
        instruction: str,
        entity_type: str,
        candidates: List[Candidate],
        properties: Mapping[str, Any],
    ) -> Union[int, str]:
        """Return the id of the selected candidate.

        Raises :class:`AmbiguousReferenceError` when the model selects nothing
        or an id outside the candidate set, :class:`ExtractionError` when its
        output does not match the disambiguation schema.
        """
        candidates = normalize_candidates(candidates, self.max_candidates)
        reference = f"{entity_type} " + ", ".join(f"{k}={v}" for k, v in properties.items())

        prompt = self.build_prompt(instruction, entity_type, candidates, properties)
        output = await self.model.generate(prompt, self.validator.json_schema("disambiguation"))

        report = self.validator.validate(output, "disambiguation")
        if not report.ok:
            raise ExtractionError(
                "Disambiguation output does not match its schema",
                raw_output=json.dumps(output, default=str),
                violations=report.violations(),
            )

        selected = output["selectedId"]
        if selected is None:
            raise AmbiguousReferenceError(reference, len(candidates))

        by_id = {str(c.id): c for c in candidates}
        match = by_id.get(str(selected).strip())
        if match is None:
            logger.warning("Model selected id %r outside of %d candidates", selected, len(candidates))
            raise AmbiguousReferenceError(reference, len(candidates), selected_id=selected)

        logger.info(f"Disambiguated {reference} -> {match.id} ({match.display_name})")
        return match.id
