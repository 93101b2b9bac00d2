"""
app.py
======================

ドキドキ!クイズチャレンジ（Streamlit）エントリーポイント。

特徴:
- ホーム画面 + メニュー構成
- 5 教科クイズ（ふつう / 苦手克服）・制限時間つき
- 結果画面で AI 先生の講評（Gemini、使えなければ定型講評）
- 苦手教科に合わせたおすすめ教材
- マイページ（教科別の正答率・おすすめ問題・苦手問題）
- ランキング / ニックネーム（Supabase が設定されている場合）
- 問題の追加・編集（管理画面）

前提:
- gakuho_quiz/bank/question_bank.jsonl に組み込み問題が格納されている
- 環境変数 GEMINI_API_KEY があれば AI 診断が有効
- 環境変数 SUPABASE_URL / SUPABASE_ANON_KEY があればクラウド同期・ランキングが有効
"""

from __future__ import annotations

import logging
import time
from typing import Any, Dict, List

import streamlit as st

from gakuho_quiz.analysis import LearningAnalyzer
from gakuho_quiz.config import AppConfig
from gakuho_quiz.diagnosis import DiagnosisService, create_diagnosis_service, get_weak_subjects
from gakuho_quiz.history import HistoryManager
from gakuho_quiz.logging_config import configure_logging
from gakuho_quiz.materials import get_recommended_materials, load_materials
from gakuho_quiz.models import (
    NO_ANSWER,
    QUIZ_MODES,
    SUBJECT_NAMES,
    SUBJECTS,
    TIME_LIMIT_OPTIONS,
    Question,
    QuizSettings,
)
from gakuho_quiz.profile import ProfileManager, get_device_id
from gakuho_quiz.question_bank import (
    QuestionRepository,
    generate_question_id,
    load_question_bank,
    validate_question_input,
)
from gakuho_quiz.remote import BackgroundSync, RemoteBackend, create_remote_backend
from gakuho_quiz.scoring import calculate_accuracy, generate_score_key, get_grade
from gakuho_quiz.session import QuizSession
from gakuho_quiz.storage import JsonFileStore
from gakuho_quiz.ui import (
    SUBJECT_ICONS,
    ensure_theme,
    render_answer_review,
    render_diagnosis,
    render_materials,
    render_quiz_page,
    render_score_block,
    render_theme_selector,
)
from gakuho_quiz.user_data import UserDataStore

logger = logging.getLogger("gakuho_quiz.app")

MODE_LABELS = {"normal": "ふつう", "weak": "苦手克服"}


# ----------------------------------------------------------------------
#  アプリ設定・サービスの組み立て
# ----------------------------------------------------------------------
def load_app_config() -> AppConfig:
    """config.toml / 環境変数を読み込み、セッションに保持する。"""
    if "app_config" not in st.session_state:
        cfg = AppConfig.load()
        configure_logging(cfg.log_level)
        st.session_state["app_config"] = cfg
    return st.session_state["app_config"]


def get_services() -> Dict[str, Any]:
    """
    ストア・リポジトリ・診断サービスなどをまとめて作り、セッションに保持する。
    ブラウザのセッションごとに 1 組。
    """
    if "services" in st.session_state:
        return st.session_state["services"]

    cfg = load_app_config()
    store = JsonFileStore(cfg.local_store_path)

    try:
        builtin = load_question_bank(cfg.question_bank_path)
    except FileNotFoundError as e:
        logger.error("%s", e)
        builtin = []

    try:
        materials = load_materials(cfg.materials_path)
    except FileNotFoundError as e:
        logger.error("%s", e)
        materials = []

    if not cfg.has_gemini:
        logger.info("GEMINI_API_KEY が未設定のため、講評は定型文になります")

    remote = create_remote_backend(cfg, lambda: get_device_id(store))
    sync = BackgroundSync() if remote is not None else None

    repository = QuestionRepository(
        store, builtin=builtin, remote=remote, remote_timeout=cfg.remote_timeout_seconds
    )
    user_data = UserDataStore(store, remote=remote, sync=sync)

    services: Dict[str, Any] = {
        "store": store,
        "remote": remote,
        "repository": repository,
        "user_data": user_data,
        "analyzer": LearningAnalyzer(repository, user_data),
        "materials": materials,
        "history": HistoryManager(store),
        "profile": ProfileManager(store, remote=remote, sync=sync),
        "diagnosis": create_diagnosis_service(
            cfg.gemini_api_key, cfg.preferred_model, cfg.diagnosis_timeout_seconds
        ),
    }
    st.session_state["services"] = services
    return services


def get_quiz_session() -> QuizSession:
    """QuizSession をセッションに保持して返す。"""
    if "quiz_session" not in st.session_state:
        services = get_services()
        st.session_state["quiz_session"] = QuizSession(services["repository"], services["user_data"])
    return st.session_state["quiz_session"]


def set_page(page: str) -> None:
    st.session_state["page"] = page


def get_page() -> str:
    return st.session_state.get("page", "home")


def go(page: str) -> None:
    set_page(page)
    st.rerun()


def render_back_home() -> None:
    st.write("")
    if st.button("🏠 ホームに戻る", key=f"back_home_{get_page()}", use_container_width=True):
        go("home")


# ----------------------------------------------------------------------
#  クイズ開始
# ----------------------------------------------------------------------
def start_quiz(settings: QuizSettings) -> None:
    session = get_quiz_session()
    session.init_quiz(settings)
    st.session_state.pop("result_outcome", None)
    st.session_state.pop("timer_index", None)
    if session.current_question is None:
        st.session_state["flash_error"] = "出題できる問題がありません。教科やモードを変えてみてね。"
        go("home")
    go("quiz")


# ----------------------------------------------------------------------
#  ページ: ホーム
# ----------------------------------------------------------------------
def render_home_page() -> None:
    cfg = load_app_config()
    services = get_services()

    st.markdown(f"## 🎯 {cfg.app_name}")
    profile = services["profile"].get_user_profile()
    if profile is not None:
        st.write(f"ようこそ、**{profile.nickname}** さん!")

    flash = st.session_state.pop("flash_error", None)
    if flash:
        st.error(flash)

    st.markdown("### クイズの設定")
    mode = st.radio(
        "モード",
        list(QUIZ_MODES),
        horizontal=True,
        format_func=lambda m: MODE_LABELS.get(m, m),
    )
    subjects = st.multiselect(
        "教科",
        list(SUBJECTS),
        default=list(SUBJECTS),
        format_func=lambda s: f"{SUBJECT_ICONS.get(s, '')} {SUBJECT_NAMES[s]}",
    )
    time_limit = st.select_slider(
        "1 問あたりの制限時間（秒）",
        options=list(TIME_LIMIT_OPTIONS),
        value=30,
    )
    question_count = st.number_input(
        "問題数", min_value=1, max_value=50, value=cfg.default_question_count, step=1
    )

    if st.button("🚀 クイズを始める", use_container_width=True):
        settings = QuizSettings(
            mode=mode,
            subjects=list(subjects),
            time_limit=int(time_limit),
            question_count=int(question_count),
        )
        try:
            settings.validate()
        except ValueError as e:
            st.error(str(e))
        else:
            start_quiz(settings)

    st.write("---")
    col1, col2 = st.columns(2)
    with col1:
        if st.button("📊 マイページ", use_container_width=True):
            go("mypage")
    with col2:
        if st.button("🏆 ランキング", use_container_width=True):
            go("ranking")

    col3, col4 = st.columns(2)
    with col3:
        if st.button("✏️ ニックネーム", use_container_width=True):
            go("nickname")
    with col4:
        if st.button("🛠 問題の管理", use_container_width=True):
            go("admin")

    st.write("")
    render_theme_selector()


# ----------------------------------------------------------------------
#  ページ: クイズ
# ----------------------------------------------------------------------
def _elapsed_for_current(session: QuizSession) -> float:
    """現在の問題を表示してからの経過秒数。問題が変わったら計測し直す。"""
    if st.session_state.get("timer_index") != session.current_index:
        st.session_state["timer_index"] = session.current_index
        st.session_state["timer_started_at"] = time.monotonic()
    return time.monotonic() - st.session_state["timer_started_at"]


def render_quiz_main_page() -> None:
    session = get_quiz_session()

    if session.is_finished:
        go("result")
    if session.current_question is None:
        st.info("出題できる問題がありません。")
        render_back_home()
        return

    elapsed = _elapsed_for_current(session)
    remaining = session.time_limit - elapsed
    mode_label = MODE_LABELS.get(session.settings.mode if session.settings else "normal", "")

    ui_result = render_quiz_page(session, remaining_seconds=remaining, mode_label=mode_label)

    if ui_result["selected_choice"] is not None:
        # 制限時間を過ぎてから押した場合は時間切れ扱い
        idx = ui_result["selected_choice"] if remaining > 0 else NO_ANSWER
        session.answer(idx, elapsed)
        st.rerun()
    elif ui_result["clicked_skip"]:
        session.answer(NO_ANSWER, elapsed)
        st.rerun()
    elif ui_result["clicked_next"]:
        session.next_question()
        if session.is_finished:
            go("result")
        st.rerun()

    if st.button("🏳 やめる", use_container_width=True):
        session.reset()
        go("home")


# ----------------------------------------------------------------------
#  ページ: 結果
# ----------------------------------------------------------------------
def _finish_quiz() -> Dict[str, Any]:
    """統計・ハイスコア・直近結果を保存し、講評を作る。1 セッションにつき 1 回。"""
    services = get_services()
    session = get_quiz_session()

    session.save_results()
    result = session.get_result()
    settings = session.settings or QuizSettings()

    key = generate_score_key(settings.mode, settings.subjects, settings.time_limit)
    is_new_best = services["user_data"].update_high_score(
        key,
        result.score,
        result.correct_count,
        result.total_questions,
        settings.time_limit,
    )
    services["history"].save_last_quiz_result(result.answered_questions, result.score)

    with st.spinner("AI 先生が講評を書いています…"):
        diagnosis_service: DiagnosisService = services["diagnosis"]
        diagnosis = diagnosis_service.get_diagnosis(result.answered_questions, result.score)

    materials = get_recommended_materials(
        services["materials"], get_weak_subjects(result.answered_questions), limit=3
    )
    return {
        "result": result,
        "is_new_best": is_new_best,
        "diagnosis": diagnosis,
        "materials": materials,
    }


def render_result_page() -> None:
    session = get_quiz_session()
    if not session.is_finished and "result_outcome" not in st.session_state:
        go("home")

    if "result_outcome" not in st.session_state:
        st.session_state["result_outcome"] = _finish_quiz()
    outcome = st.session_state["result_outcome"]
    result = outcome["result"]

    st.markdown("## 🏁 結果発表")
    accuracy = calculate_accuracy(result.answered_questions)
    grade, message = get_grade(accuracy)
    render_score_block(
        result.score, result.correct_count, result.total_questions, grade, message, outcome["is_new_best"]
    )

    render_diagnosis(outcome["diagnosis"])
    if not load_app_config().has_gemini:
        st.caption("GEMINI_API_KEY を設定すると AI 先生の講評が読めます。")
    render_materials(outcome["materials"])
    render_answer_review(result.answered_questions)

    col1, col2 = st.columns(2)
    with col1:
        if st.button("🔁 同じ設定でもう一度", use_container_width=True) and session.settings:
            start_quiz(session.settings)
    with col2:
        if st.button("📊 マイページ", use_container_width=True):
            go("mypage")

    render_back_home()


# ----------------------------------------------------------------------
#  ページ: マイページ（学習分析）
# ----------------------------------------------------------------------
def _question_rows(questions: List[Question], stats: Dict[str, Any]) -> List[Dict[str, Any]]:
    rows = []
    for q in questions:
        stat = stats.get(q.id)
        rows.append(
            {
                "教科": q.subject_name,
                "問題": q.question,
                "難易度": "⭐" * q.difficulty,
                "解答数": stat.attempts if stat else 0,
                "正答率": f"{round(stat.accuracy * 100)}%" if stat and stat.attempts else "未挑戦",
            }
        )
    return rows


def render_mypage() -> None:
    import pandas as pd

    services = get_services()
    analyzer: LearningAnalyzer = services["analyzer"]
    user_data: UserDataStore = services["user_data"]

    st.markdown("## 📊 マイページ")

    # この画面で使う問題と統計は 1 回だけ取得する
    questions, stats = analyzer.snapshot()
    analysis = analyzer.analyze_by_subject(questions, stats)
    st.write(f"- 全体の正答率: **{analysis.overall_accuracy}%**")
    st.write(f"- 解いた問題: **{analysis.total_questions_solved} 問**")
    if analysis.weak_subjects:
        st.write("- 苦手な教科: " + "、".join(SUBJECT_NAMES[s] for s in analysis.weak_subjects))
    if analysis.strong_subjects:
        st.write("- 得意な教科: " + "、".join(SUBJECT_NAMES[s] for s in analysis.strong_subjects))

    df = pd.DataFrame(
        [
            {
                "教科": row.subject_name,
                "解答数": row.total_attempts,
                "正解数": row.total_correct,
                "正答率(%)": row.accuracy,
                "挑戦した問題": row.question_count,
            }
            for row in analysis.subject_analysis
        ]
    )
    st.dataframe(df, use_container_width=True, hide_index=True)
    st.bar_chart(df.set_index("教科")["正答率(%)"])

    st.markdown("### 🌟 おすすめ問題")
    recommended = analyzer.get_recommended_questions(10, questions, stats)
    if recommended:
        st.dataframe(pd.DataFrame(_question_rows(recommended, stats)), use_container_width=True, hide_index=True)
    if analysis.weak_subjects and st.button("💪 苦手克服モードで挑戦", use_container_width=True):
        start_quiz(
            QuizSettings(
                mode="weak",
                subjects=list(analysis.weak_subjects),
                time_limit=30,
                question_count=load_app_config().default_question_count,
            )
        )

    st.markdown("### 🔍 教科ごとの苦手問題")
    subject = st.selectbox("教科", list(SUBJECTS), format_func=lambda s: SUBJECT_NAMES[s])
    weak_questions = analyzer.get_weak_questions_for_subject(subject, 5, questions, stats)
    if weak_questions:
        st.dataframe(pd.DataFrame(_question_rows(weak_questions, stats)), use_container_width=True, hide_index=True)
    else:
        st.info("この教科の問題はまだありません。")

    st.markdown("### 🏅 ハイスコア")
    high_scores = user_data.get_high_scores()
    if high_scores:
        st.dataframe(
            pd.DataFrame(
                [{"設定": k, "スコア": v} for k, v in high_scores.items()]
            ).sort_values("スコア", ascending=False),
            use_container_width=True,
            hide_index=True,
        )
    else:
        st.info("まだハイスコアはありません。")

    last = services["history"].get_last_quiz_result()
    if last is not None:
        with st.expander("直近のクイズ（1 時間以内）"):
            st.write(f"スコア: **{last.total_score} 点**")
            render_answer_review(last.answered_questions)

    st.write("---")
    if st.checkbox("学習データをリセットする"):
        if st.button("⚠️ 本当にリセット", use_container_width=True):
            user_data.reset()
            services["history"].clear_last_quiz_result()
            st.success("リセットしました。")

    render_back_home()


# ----------------------------------------------------------------------
#  ページ: ランキング
# ----------------------------------------------------------------------
def render_ranking_page() -> None:
    import pandas as pd

    services = get_services()
    remote: RemoteBackend | None = services["remote"]

    st.markdown("## 🏆 ランキング")
    if remote is None:
        st.info("ランキングを使うには SUPABASE_URL と SUPABASE_ANON_KEY を設定してください。")
        render_back_home()
        return

    period = st.radio(
        "期間",
        ["weekly", "monthly", "all"],
        horizontal=True,
        format_func=lambda p: {"weekly": "週間", "monthly": "月間", "all": "全期間"}[p],
    )
    entries = remote.fetch_ranking(period, 50)
    if not entries:
        st.info("まだランキングはありません。")
    else:
        st.dataframe(
            pd.DataFrame(
                [
                    {
                        "順位": e.rank,
                        "ニックネーム": ("👉 " if e.is_me else "") + e.nickname,
                        "スコア": e.score,
                    }
                    for e in entries
                ]
            ),
            use_container_width=True,
            hide_index=True,
        )

    my_rank = remote.get_my_rank()
    if my_rank is not None:
        st.write(f"あなたの順位: **{my_rank} 位**")

    history = remote.get_quiz_history(20)
    if history:
        with st.expander("スコア履歴"):
            st.dataframe(pd.DataFrame(history), use_container_width=True, hide_index=True)

    render_back_home()


# ----------------------------------------------------------------------
#  ページ: ニックネーム
# ----------------------------------------------------------------------
def render_nickname_page() -> None:
    services = get_services()
    profiles: ProfileManager = services["profile"]

    st.markdown("## ✏️ ニックネーム")
    profile = profiles.get_user_profile()
    if profile is not None:
        st.write(f"いまのニックネーム: **{profile.nickname}**")
        st.write(f"招待コード: `{profile.invite_code}`")

    nickname = st.text_input("ニックネーム（2〜12文字）", value=profile.nickname if profile else "")
    if st.button("保存する", use_container_width=True):
        try:
            saved = profiles.update_nickname(nickname)
        except ValueError as e:
            st.error(str(e))
        else:
            st.success(f"「{saved.nickname}」で登録したよ!")

    render_back_home()


# ----------------------------------------------------------------------
#  ページ: 問題の管理
# ----------------------------------------------------------------------
def _render_question_form(prefix: str, initial: Question | None = None) -> Dict[str, Any] | None:
    """問題の入力フォーム。送信されたら入力値を返す。"""
    with st.form(f"{prefix}_form"):
        subject = st.selectbox(
            "教科",
            list(SUBJECTS),
            index=list(SUBJECTS).index(initial.subject) if initial else 0,
            format_func=lambda s: SUBJECT_NAMES[s],
        )
        text = st.text_area("問題文", value=initial.question if initial else "")
        choices = []
        for i in range(4):
            default = initial.choices[i] if initial and i < len(initial.choices) else ""
            choices.append(st.text_input(f"選択肢 {i + 1}", value=default, key=f"{prefix}_choice_{i}"))
        correct_index = st.radio(
            "正解",
            [0, 1, 2, 3],
            index=initial.correct_index if initial and initial.correct_index < 4 else 0,
            horizontal=True,
            format_func=lambda i: f"選択肢 {i + 1}",
        )
        difficulty = st.radio(
            "難易度", [1, 2, 3], index=(initial.difficulty - 1) if initial else 0, horizontal=True
        )
        submitted = st.form_submit_button("保存する")

    if not submitted:
        return None
    return {
        "subject": subject,
        "question": text,
        "choices": choices,
        "correct_index": int(correct_index),
        "difficulty": int(difficulty),
    }


def _build_question(question_id: str, values: Dict[str, Any]) -> Question | None:
    error = validate_question_input(values["question"], values["choices"], values["correct_index"])
    if error:
        st.error(error)
        return None

    # 空欄の選択肢は詰める（正解 index もずらす）
    filled = [(i, c.strip()) for i, c in enumerate(values["choices"]) if c.strip()]
    new_correct = next(n for n, (i, _) in enumerate(filled) if i == values["correct_index"])
    return Question(
        id=question_id,
        subject=values["subject"],
        question=values["question"].strip(),
        choices=tuple(c for _, c in filled),
        correct_index=new_correct,
        difficulty=values["difficulty"],
    )


def render_admin_page() -> None:
    import pandas as pd

    services = get_services()
    repository: QuestionRepository = services["repository"]

    st.markdown("## 🛠 問題の管理")

    tab_add, tab_edit, tab_list = st.tabs(["追加", "編集・削除", "一覧"])

    with tab_add:
        values = _render_question_form("add")
        if values is not None:
            question = _build_question(generate_question_id(values["subject"]), values)
            if question is not None:
                repository.add_question(question)
                st.success("問題を追加しました。")

    with tab_edit:
        customs = repository.get_custom_questions()
        if not customs:
            st.info("追加した問題はまだありません。組み込み問題は編集できません。")
        else:
            target = st.selectbox(
                "問題を選ぶ",
                customs,
                format_func=lambda q: f"[{q.subject_name}] {q.question[:30]}",
            )
            values = _render_question_form("edit", target)
            if values is not None:
                question = _build_question(target.id, values)
                if question is not None and repository.update_question(question):
                    st.success("問題を更新しました。")
            if st.button("🗑 この問題を削除", use_container_width=True):
                if repository.delete_question(target.id):
                    st.success("削除しました。")
                    st.rerun()

    with tab_list:
        all_questions = repository.get_all_questions()
        st.write(f"全 **{len(all_questions)} 問**")
        st.dataframe(
            pd.DataFrame(
                [
                    {
                        "ID": q.id,
                        "教科": q.subject_name,
                        "問題": q.question,
                        "難易度": q.difficulty,
                        "種類": "追加" if repository.is_custom_question(q.id) else "組み込み",
                    }
                    for q in all_questions
                ]
            ),
            use_container_width=True,
            hide_index=True,
        )

    render_back_home()


# ----------------------------------------------------------------------
#  メイン
# ----------------------------------------------------------------------
def main() -> None:
    st.set_page_config(
        page_title="ドキドキ!クイズチャレンジ",
        page_icon="🎯",
        layout="centered",
    )

    load_app_config()
    ensure_theme()

    page = get_page()

    if page == "quiz":
        render_quiz_main_page()
    elif page == "result":
        render_result_page()
    elif page == "mypage":
        render_mypage()
    elif page == "ranking":
        render_ranking_page()
    elif page == "nickname":
        render_nickname_page()
    elif page == "admin":
        render_admin_page()
    else:
        # デフォルトはホーム
        set_page("home")
        render_home_page()


if __name__ == "__main__":
    main()
