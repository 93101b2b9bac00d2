from __future__ import annotations

import time
from types import SimpleNamespace

import pytest
from conftest import make_answer, make_question
from google.api_core.exceptions import InternalServerError, ResourceExhausted

from gakuho_quiz import diagnosis
from gakuho_quiz.diagnosis import (
    DiagnosisService,
    ModelManager,
    aggregate_by_subject,
    build_prompt,
    create_diagnosis_service,
    get_fallback_diagnosis,
    get_weak_subjects,
    parse_ai_response,
)


def _answers(math_correct: int, math_total: int, english_correct: int = 0, english_total: int = 0):
    m = make_question("ma-x", subject="math")
    e = make_question("en-x", subject="english")
    answers = [make_answer(m, i < math_correct) for i in range(math_total)]
    answers += [make_answer(e, i < english_correct) for i in range(english_total)]
    return answers


# ----------------------------------------------------------------------
#  集計・プロンプト
# ----------------------------------------------------------------------
def test_aggregate_only_includes_asked_subjects():
    scores = aggregate_by_subject(_answers(1, 4, 2, 2))
    assert [(s.subject, s.correct, s.total, s.rate) for s in scores] == [
        ("math", 1, 4, 25),
        ("english", 2, 2, 100),
    ]
    assert scores[0].subject_name == "数学"


def test_weak_subjects_sorted_by_rate():
    s = make_question("sc-x", subject="science")
    answers = _answers(1, 2, 0, 3) + [make_answer(s, True)]
    assert get_weak_subjects(answers) == ["english", "math"]


def test_prompt_contains_summary_lines():
    prompt = build_prompt(aggregate_by_subject(_answers(1, 4)), 25, 200)
    assert "総合正答率: 25%" in prompt
    assert "スコア: 200点" in prompt
    assert "数学: 1/4問正解 (25%)" in prompt
    assert '"comment"' in prompt


# ----------------------------------------------------------------------
#  応答の解析
# ----------------------------------------------------------------------
def test_parse_json_embedded_in_text():
    text = 'はい!\n{"comment": "よくできたね", "strengths": ["数学"], "weaknesses": [], "advice": "復習しよう"}\n以上'
    result = parse_ai_response(text, [])
    assert result.comment == "よくできたね"
    assert result.strengths == ["数学"]
    assert result.advice == "復習しよう"
    assert result.source == "ai"


def test_parse_plain_text_derives_lists_from_scores():
    scores = aggregate_by_subject(_answers(1, 4, 3, 3))
    text = "がんばったね" * 100
    result = parse_ai_response(text, scores)
    assert result.comment == text[:300]
    assert result.strengths == ["英語が得意"]
    assert result.weaknesses == ["数学をもう少し"]
    assert result.advice == "苦手な教科を中心に復習してみよう!"


# ----------------------------------------------------------------------
#  定型講評
# ----------------------------------------------------------------------
@pytest.mark.parametrize(
    "correct, expected_start",
    [
        (9, "すごい! 90%"),
        (6, "なかなかいい感じ! 60%"),
        (4, "40%の正答率"),
        (1, "今回は10%"),
    ],
)
def test_fallback_bands(correct, expected_start):
    result = get_fallback_diagnosis(_answers(correct, 10), 0)
    assert result.comment.startswith(expected_start)
    assert result.source == "fallback"


def test_fallback_default_strength_and_weaknesses():
    result = get_fallback_diagnosis(_answers(1, 4), 100)
    assert result.strengths == ["チャレンジする姿勢が素晴らしい!"]
    assert result.weaknesses == ["数学をもう少し頑張ろう"]
    assert result.advice == "まずは教科書の基本をしっかり確認してみよう!"


def test_fallback_with_no_answers():
    result = get_fallback_diagnosis([], 0)
    assert "0%" in result.comment


# ----------------------------------------------------------------------
#  DiagnosisService
# ----------------------------------------------------------------------
class FakeGenerator:
    def __init__(self, response=None, delay=0.0, error=None):
        self.response = response
        self.delay = delay
        self.error = error
        self.prompts = []

    def generate(self, prompt):
        self.prompts.append(prompt)
        if self.delay:
            time.sleep(self.delay)
        if self.error is not None:
            raise self.error
        return self.response


def test_service_without_generator_uses_fallback():
    service = create_diagnosis_service("")
    assert service.generator is None
    assert service.get_diagnosis(_answers(2, 2), 400).source == "fallback"


def test_service_uses_ai_response():
    generator = FakeGenerator({"text": '{"comment": "AI です", "strengths": [], "weaknesses": [], "advice": ""}', "offline": False})
    result = DiagnosisService(generator).get_diagnosis(_answers(2, 2), 400)
    assert result.source == "ai"
    assert result.comment == "AI です"
    assert "スコア: 400点" in generator.prompts[0]


def test_service_falls_back_when_offline():
    result = DiagnosisService(FakeGenerator({"offline": True})).get_diagnosis(_answers(2, 2), 400)
    assert result.source == "fallback"


def test_service_falls_back_on_error():
    result = DiagnosisService(FakeGenerator(error=RuntimeError("boom"))).get_diagnosis(_answers(2, 2), 400)
    assert result.source == "fallback"


def test_service_falls_back_on_timeout():
    generator = FakeGenerator({"text": "{}", "offline": False}, delay=0.5)
    result = DiagnosisService(generator, timeout=0.05).get_diagnosis(_answers(2, 2), 400)
    assert result.source == "fallback"


def test_service_skips_model_for_empty_quiz():
    generator = FakeGenerator({"text": "{}", "offline": False})
    DiagnosisService(generator).get_diagnosis([], 0)
    assert generator.prompts == []


def test_hung_model_call_is_not_queued_again():
    generator = FakeGenerator({"text": '{"comment": "遅い"}', "offline": False}, delay=0.3)
    service = DiagnosisService(generator, timeout=0.02)

    first = service.get_diagnosis(_answers(2, 2), 400)
    second = service.get_diagnosis(_answers(2, 2), 400)
    assert first.source == second.source == "fallback"
    assert len(generator.prompts) == 1

    time.sleep(0.4)
    generator.delay = 0.0
    service.timeout = 2.0
    assert service.get_diagnosis(_answers(2, 2), 400).source == "ai"
    assert len(generator.prompts) == 2


# ----------------------------------------------------------------------
#  ModelManager（google.generativeai を差し替え）
# ----------------------------------------------------------------------
@pytest.fixture
def fake_genai(monkeypatch):
    state = {"failing": set(), "exhausted": set(), "created": []}

    class FakeModel:
        def __init__(self, name, system_instruction=None, generation_config=None):
            self.name = name
            state["created"].append((name, system_instruction, generation_config))

        def generate_content(self, prompt, request_options=None):
            if self.name in state["exhausted"]:
                raise ResourceExhausted("quota")
            if self.name in state["failing"]:
                raise InternalServerError("down")
            return SimpleNamespace(text=f"{self.name}: ok")

    models = [
        SimpleNamespace(name="models/gemini-1.0-pro", supported_generation_methods=["generateContent"]),
        SimpleNamespace(name="models/gemini-1.5-flash", supported_generation_methods=["generateContent"]),
        SimpleNamespace(name="models/embedding-001", supported_generation_methods=["embedContent"]),
    ]
    monkeypatch.setattr(diagnosis.genai, "configure", lambda **kwargs: None)
    monkeypatch.setattr(diagnosis.genai, "list_models", lambda: iter(models))
    monkeypatch.setattr(diagnosis.genai, "GenerativeModel", FakeModel)
    monkeypatch.setattr(diagnosis.time, "sleep", lambda _: None)
    return state


def test_model_list_excludes_non_generative(fake_genai):
    manager = ModelManager("key")
    assert manager.list_models() == ["models/gemini-1.5-flash", "models/gemini-1.0-pro"]


def test_preferred_model_is_used_first(fake_genai):
    manager = ModelManager("key", preferred_model="gemini-1.0-pro")
    assert manager.select_best_model() == "models/gemini-1.0-pro"
    result = manager.generate("prompt")
    assert result["model"] == "models/gemini-1.0-pro"
    assert fake_genai["created"][0][1] == diagnosis.SYSTEM_PROMPT


def test_failover_to_next_model(fake_genai):
    fake_genai["failing"].add("models/gemini-1.5-flash")
    result = ModelManager("key").generate("prompt")
    assert result == {"model": "models/gemini-1.0-pro", "text": "models/gemini-1.0-pro: ok", "offline": False}


def test_quota_error_stops_immediately(fake_genai):
    fake_genai["exhausted"].add("models/gemini-1.5-flash")
    result = ModelManager("key").generate("prompt")
    assert result["offline"] is True
    assert len(fake_genai["created"]) == 1
