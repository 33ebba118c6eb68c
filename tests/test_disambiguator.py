import pytest

from agents.disambiguator.agent import DisambiguatorAgent
from core.errors import AmbiguousReferenceError, ExtractionError
from core.schemas import Candidate
from helpers import StubModel

CANDIDATES = [
    Candidate(id="11", display_name="George", attributes={"company": "Alphabak Ltd"}),
    Candidate(id="12", display_name="George", attributes={"company": "Alphabak"}),
    Candidate(id="13", display_name="Georgie", attributes={"company": "Alpha Bank"}),
]
PROPS = {"name": "George", "company": "Alphabak"}
INSTRUCTION = "Mark the contact named George at Alphabak as done"


@pytest.mark.asyncio
async def test_selected_candidate_id_is_returned_exactly():
    model = StubModel({"selectedId": "12"})
    selected = await DisambiguatorAgent(model).select(INSTRUCTION, "contact", CANDIDATES, PROPS)

    assert selected == CANDIDATES[1].id
    assert selected in [c.id for c in CANDIDATES]
    prompt = model.prompts[0]
    assert INSTRUCTION in prompt
    assert '"id": "13"' in prompt
    assert '"company": "Alphabak"' in prompt


@pytest.mark.asyncio
async def test_integer_selection_maps_to_the_candidate_id():
    candidates = [Candidate(id=4, display_name="A"), Candidate(id=5, display_name="B")]
    selected = await DisambiguatorAgent(StubModel({"selectedId": "5"})).select("x", "company", candidates, {})
    assert selected == 5


@pytest.mark.asyncio
async def test_null_selection_is_ambiguous():
    with pytest.raises(AmbiguousReferenceError) as exc:
        await DisambiguatorAgent(StubModel({"selectedId": None})).select(INSTRUCTION, "contact", CANDIDATES, PROPS)
    assert exc.value.candidate_count == 3


@pytest.mark.asyncio
async def test_id_outside_the_candidate_set_is_rejected():
    with pytest.raises(AmbiguousReferenceError) as exc:
        await DisambiguatorAgent(StubModel({"selectedId": "99"})).select(INSTRUCTION, "contact", CANDIDATES, PROPS)
    assert exc.value.selected_id == "99"
    assert "3 candidates" in str(exc.value)


@pytest.mark.asyncio
async def test_schema_invalid_output_is_an_extraction_error():
    with pytest.raises(ExtractionError):
        await DisambiguatorAgent(StubModel({"bestMatch": "12"})).select(INSTRUCTION, "contact", CANDIDATES, PROPS)


@pytest.mark.asyncio
async def test_same_input_gives_same_answer():
    model = StubModel({"selectedId": "11"}, {"selectedId": "11"})
    agent = DisambiguatorAgent(model)
    first = await agent.select(INSTRUCTION, "contact", CANDIDATES, PROPS)
    second = await agent.select(INSTRUCTION, "contact", CANDIDATES, PROPS)
    assert first == second
    assert model.prompts[0] == model.prompts[1]
