from __future__ import annotations

from datetime import datetime, timedelta

import click

from examsim import create_app, db
from examsim.models import Exam, ExamAttempt, Profile, QuestionResponse
from examsim.services.attempts import sync_exam_catalog
from examsim.services.enem_api import EnemApiError
from examsim.services.exam_session import compute_score

app = create_app()


@app.cli.command("init-db")
def init_db() -> None:
    """Initialise the database schema."""
    db.create_all()
    app.logger.info("Database tables created")


@app.cli.command("sync-exams")
def sync_exams() -> None:
    """Refresh the local exam catalogue from the ENEM API."""
    client = app.extensions["enem_api"]
    try:
        exams = sync_exam_catalog(client, refresh_questions=True)
    except EnemApiError as exc:
        db.session.rollback()
        raise click.ClickException(f"Could not refresh the exam catalogue: {exc}") from exc
    app.logger.info("Exam catalogue synchronised: %s exams", len(exams))


@app.cli.command("seed-demo")
@click.option("--email", default="learner@example.com", show_default=True)
@click.option("--password", default="password123", show_default=True)
def seed_demo(email: str, password: str) -> None:
    """Reset the database with a demo learner and a few finished attempts."""
    db.drop_all()
    db.create_all()

    profile = Profile(email=email, full_name="Demo Learner", preferred_language="PORTUGUESE")
    profile.set_password(password)
    db.session.add(profile)

    exams = [
        Exam(year=year, title=f"ENEM {year}", description=f"Prova do ENEM {year}")
        for year in (2023, 2022, 2021)
    ]
    db.session.add_all(exams)
    db.session.flush()

    now = datetime.utcnow()
    # (year, days ago, answers given, answers correct) for a 45 question paper.
    history = [(2021, 12, 45, 22), (2022, 6, 40, 27), (2023, 1, 45, 31)]
    total_questions = 45
    for year, days_ago, answered, correct in history:
        started_at = now - timedelta(days=days_ago, hours=3)
        attempt = ExamAttempt(
            exam_year=year,
            profile=profile,
            started_at=started_at,
            completed_at=started_at + timedelta(hours=2, minutes=10),
            score=compute_score(correct, total_questions),
            total_questions=total_questions,
            correct_answers=correct,
            time_spent=int(timedelta(hours=2, minutes=10).total_seconds()),
        )
        db.session.add(attempt)
        db.session.flush()
        for question_id in range(1, answered + 1):
            is_correct = question_id <= correct
            db.session.add(
                QuestionResponse(
                    attempt_id=attempt.id,
                    question_id=question_id,
                    selected_option="A" if is_correct else "B",
                    is_correct=is_correct,
                    time_spent=150 + question_id,
                )
            )

    db.session.commit()
    app.logger.info("Demo data created: learner login %s / %s", email, password)
