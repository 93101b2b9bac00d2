"""
ui.py
======================

Streamlit ベースの UI コンポーネントをまとめたモジュール。

責務:
- スマートフォンを主ターゲットとしたレイアウトとスタイル
- 問題画面の描画（問題文・選択肢・正誤・残り時間）
- 結果画面の部品（スコア・グレード・AI 診断）

ここでは「見た目」と「ユーザー操作の入力」を扱い、
出題・採点・統計更新などのロジックは app.py 側（QuizSession）に任せる。

戻り値として「何が押されたか」「どの選択肢が新たに選ばれたか」を返す。
"""

from __future__ import annotations

import html
from typing import Any, Dict, List, Optional, Sequence

import streamlit as st

from .materials import Material
from .models import NO_ANSWER, AnsweredQuestion, DiagnosisResult
from .session import QuizSession

# ----------------------------------------------------------------------
#  テーマ定義
# ----------------------------------------------------------------------


THEMES: Dict[str, Dict[str, str]] = {
    "light": {
        "bg": "#fffdf7",
        "text": "#1c1c1e",
        "surface": "#fff4d6",
        "surface_alt": "#ffffff",
        "border": "#f0d9a0",
        "primary": "#ff8a00",  # がくまるオレンジ
        "correct": "#34c759",
        "incorrect": "#ff3b30",
    },
    "dark": {
        "bg": "#000000",
        "text": "#f5f5f7",
        "surface": "#1c1c1e",
        "surface_alt": "#2c2c2e",
        "border": "#3a3a3c",
        "primary": "#ff9f0a",
        "correct": "#30d158",
        "incorrect": "#ff453a",
    },
}

SUBJECT_ICONS: Dict[str, str] = {
    "japanese": "📖",
    "social": "🌏",
    "math": "📐",
    "science": "🔬",
    "english": "🔤",
}


# ----------------------------------------------------------------------
#  CSS 生成
# ----------------------------------------------------------------------
def _generate_css(theme: Dict[str, str]) -> str:
    """テーマに応じたグローバル CSS を生成する。"""

    return f"""
    <style>
    html, body {{
        background: {theme['bg']};
        color: {theme['text']};
        -webkit-text-size-adjust: 100%;
        touch-action: manipulation;
    }}

    .gk-header {{
        display: flex;
        justify-content: space-between;
        align-items: center;
        gap: 0.5rem;
        margin-bottom: 0.5rem;
    }}

    .gk-tag {{
        padding: 0.1rem 0.5rem;
        border-radius: 999px;
        background: {theme['surface']};
        border: 1px solid {theme['border']};
        font-size: 0.8rem;
    }}

    .gk-timer {{
        display: flex;
        align-items: center;
        gap: 0.5rem;
        font-size: 0.8rem;
    }}

    .gk-timer-bar {{
        flex: 1;
        height: 8px;
        background: {theme['border']}55;
        border-radius: 4px;
        overflow: hidden;
    }}

    .gk-timer-fill {{
        height: 8px;
        background: {theme['primary']};
        border-radius: 4px;
    }}

    .gk-question-box {{
        background: {theme['surface_alt']};
        padding: 1rem;
        border-radius: 12px;
        border: 1px solid {theme['border']};
        font-size: 1.15rem;
        line-height: 1.6;
        margin: 0.5rem 0 0.75rem 0;
    }}

    .gk-score {{
        font-size: 2.4rem;
        font-weight: 700;
        color: {theme['primary']};
        text-align: center;
    }}

    .gk-grade {{
        font-size: 1.2rem;
        text-align: center;
    }}

    .gk-diagnosis {{
        padding: 0.9rem;
        border-radius: 10px;
        background: {theme['surface']};
        border: 1px solid {theme['border']};
        line-height: 1.6;
    }}

    .gk-safe-bottom {{
        height: 80px; /* スマホ下部 UI に埋もれないための余白 */
    }}
    </style>
    """


# ----------------------------------------------------------------------
#  テーマ関連
# ----------------------------------------------------------------------
def ensure_theme() -> Dict[str, str]:
    """セッションの theme キーから現在のテーマを返す。CSS も注入する。"""
    theme_key = st.session_state.get("theme", "light")
    if theme_key not in THEMES:
        theme_key = "light"
    st.session_state["theme"] = theme_key
    theme = THEMES[theme_key]
    st.markdown(_generate_css(theme), unsafe_allow_html=True)
    return theme


def render_theme_selector() -> None:
    options = list(THEMES.keys())
    current = st.session_state.get("theme", "light")
    idx = options.index(current) if current in options else 0
    selected = st.radio(
        "テーマ",
        options,
        index=idx,
        horizontal=True,
        format_func=lambda k: {"light": "ライト", "dark": "ダーク"}.get(k, k),
    )
    st.session_state["theme"] = selected


# ----------------------------------------------------------------------
#  公開 API: クイズページの描画
# ----------------------------------------------------------------------
def render_quiz_page(
    session: QuizSession,
    *,
    remaining_seconds: float,
    mode_label: str = "ふつう",
) -> Dict[str, Any]:
    """
    クイズページを描画し、ユーザー操作の結果を返す。

    引数:
        session:
            QuizSession。current_question がある前提。
        remaining_seconds:
            現在の問題の残り時間（秒）。0 以下なら時間切れ表示。
        mode_label:
            画面上に表示するモード表記。

    戻り値:
        {
          "selected_choice": Optional[int],   # 新たに押された選択肢 index (なければ None)
          "clicked_skip": bool,               # わからない（時間切れ扱い）
          "clicked_next": bool,
        }
    """
    q = session.current_question
    if q is None:
        st.error("出題できる問題がありません。")
        return {"selected_choice": None, "clicked_skip": False, "clicked_next": False}

    selected_choice: Optional[int] = None
    clicked_skip = False
    clicked_next = False

    total = len(session.questions)
    number = session.current_index + 1
    icon = SUBJECT_ICONS.get(q.subject, "")

    # ----------------------------------------
    # ヘッダー
    # ----------------------------------------
    st.markdown(
        "<div class='gk-header'>"
        f"<span class='gk-tag'>{icon} {q.subject_name}</span>"
        f"<span class='gk-tag'>{html.escape(mode_label)}</span>"
        f"<span>{number} / {total} 問</span>"
        "</div>",
        unsafe_allow_html=True,
    )
    st.progress(min(session.current_index / total, 1.0) if total else 0.0)

    # 残り時間バー
    limit = session.time_limit
    ratio = min(max(remaining_seconds / limit, 0.0), 1.0) if limit else 0.0
    label = f"残り {int(max(remaining_seconds, 0))} 秒" if remaining_seconds > 0 else "時間切れ!"
    st.markdown(
        "<div class='gk-timer'>"
        f"<div>{label}</div>"
        "<div class='gk-timer-bar'>"
        f"<div class='gk-timer-fill' style='width:{int(ratio * 100)}%'></div>"
        "</div>"
        f"<div>{'⭐' * q.difficulty}</div>"
        "</div>",
        unsafe_allow_html=True,
    )

    # ----------------------------------------
    # 問題文
    # ----------------------------------------
    st.markdown(question_box_html(q.question), unsafe_allow_html=True)

    # ----------------------------------------
    # 選択肢
    # ----------------------------------------
    answered: Optional[AnsweredQuestion] = None
    if session.is_current_answered and session.answered_questions:
        answered = session.answered_questions[-1]

    for idx, choice_text in enumerate(q.choices):
        prefix = ""
        if answered is not None:
            if idx == q.correct_index:
                prefix = "⭕ "
            elif idx == answered.selected_index:
                prefix = "❌ "
        if st.button(
            f"{prefix}{choice_text}",
            key=f"gk_choice_{session.current_index}_{idx}",
            use_container_width=True,
            disabled=answered is not None,
        ):
            selected_choice = idx

    # ----------------------------------------
    # 正誤 / ナビゲーション
    # ----------------------------------------
    if answered is None:
        if st.button("🤔 わからない", key=f"gk_skip_{session.current_index}", use_container_width=True):
            clicked_skip = True
    else:
        if answered.is_correct:
            st.success("せいかい!")
        elif answered.selected_index == NO_ANSWER:
            st.warning(f"時間切れ… 正解は「{q.choices[q.correct_index]}」")
        else:
            st.error(f"ざんねん… 正解は「{q.choices[q.correct_index]}」")

        next_label = "結果を見る ▶" if number >= total else "次の問題 ▶"
        if st.button(next_label, key=f"gk_next_{session.current_index}", use_container_width=True):
            clicked_next = True

    st.markdown("<div class='gk-safe-bottom'></div>", unsafe_allow_html=True)

    return {
        "selected_choice": selected_choice,
        "clicked_skip": clicked_skip,
        "clicked_next": clicked_next,
    }


# ----------------------------------------------------------------------
#  結果画面の部品
# ----------------------------------------------------------------------
def render_score_block(score: int, correct: int, total: int, grade: str, message: str, is_new_best: bool) -> None:
    st.markdown(f"<div class='gk-score'>{score} 点</div>", unsafe_allow_html=True)
    st.markdown(
        f"<div class='gk-grade'>評価 <b>{grade}</b> ・ {message}（{correct} / {total} 問正解）</div>",
        unsafe_allow_html=True,
    )
    if is_new_best:
        st.balloons()
        st.success("🎉 自己ベスト更新!")


def render_diagnosis(diagnosis: DiagnosisResult) -> None:
    """AI 診断（または定型講評）を表示する。"""
    title = "🤖 AI 先生の講評" if diagnosis.source == "ai" else "🐻 がくまるからのひとこと"
    st.markdown(f"### {title}")
    st.markdown(diagnosis_html(diagnosis.comment), unsafe_allow_html=True)

    col_good, col_bad = st.columns(2)
    with col_good:
        st.markdown("**得意なところ**")
        st.markdown(_bullets(diagnosis.strengths))
    with col_bad:
        st.markdown("**がんばりどころ**")
        st.markdown(_bullets(diagnosis.weaknesses) if diagnosis.weaknesses else "- なし")

    if diagnosis.advice:
        st.info(f"💡 {diagnosis.advice}")


def render_answer_review(answered: List[AnsweredQuestion]) -> None:
    with st.expander("解答の振り返り"):
        for i, a in enumerate(answered, start=1):
            mark = "⭕" if a.is_correct else "❌"
            picked = "時間切れ" if a.selected_index == NO_ANSWER else a.question.choices[a.selected_index]
            st.markdown(
                f"{mark} **Q{i}. {a.question.question}**  \n"
                f"あなたの答え: {picked} / 正解: {a.question.choices[a.question.correct_index]}"
                f"（{a.time_spent:.1f} 秒）"
            )


def _bullets(items: List[str]) -> str:
    return "\n".join(f"- {item}" for item in items)


# ----------------------------------------------------------------------
#  HTML 断片
# ----------------------------------------------------------------------
# 問題文と講評は外部から入るので、エスケープしてから埋め込む
def question_box_html(text: str) -> str:
    return f"<div class='gk-question-box'>{html.escape(text)}</div>"


def diagnosis_html(comment: str) -> str:
    return f"<div class='gk-diagnosis'>{html.escape(comment)}</div>"


# ----------------------------------------------------------------------
#  おすすめ教材
# ----------------------------------------------------------------------
def render_materials(materials: Sequence[Material]) -> None:
    """苦手教科向けのおすすめ教材。空なら何も出さない。"""
    if not materials:
        return
    st.markdown("### 📚 おすすめ教材")
    for m in materials:
        st.markdown(
            f"{SUBJECT_ICONS.get(m.subject, '')} **[{m.name}]({m.url})**（{m.subject_name}・{m.price} 円）  \n"
            f"{m.description}"
        )
