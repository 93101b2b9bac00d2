from __future__ import annotations

from gakuho_quiz.ui import diagnosis_html, question_box_html


def test_question_text_is_escaped():
    out = question_box_html("<script>alert(1)</script> x < y & z")
    assert "<script>" not in out
    assert "&lt;script&gt;" in out
    assert "x &lt; y &amp; z" in out
    assert out.startswith("<div class='gk-question-box'>")


def test_ai_comment_is_escaped():
    out = diagnosis_html('<img src=x onerror="alert(1)">よくできました')
    assert "<img" not in out
    assert "よくできました" in out
