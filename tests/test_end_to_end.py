"""Full classroom flow over HTTP: class, join, publish, submit, background grading."""

from __future__ import annotations

import json
from datetime import date, timedelta

import tasks

MODEL_REPLY = json.dumps({
    "total_score": 10,
    "ai_feedback": "ok",
    "question_scores": {"q1": 10},
    "question_feedback": {"q1": "correct"},
})


class TestClassroomFlow:
    def test_submit_then_grade(self, app, client, fake_llm, monkeypatch):
        # Teacher and student sign up through the API.
        for username, role in (("t_zhang", "teacher"), ("s_li", "student")):
            resp = client.post("/api/register", json={
                "username": username, "password": "pw12345", "role": role, "display_name": username,
            })
            assert resp.status_code == 201

        teacher = app.test_client()
        teacher.post("/api/login", json={"username": "t_zhang", "password": "pw12345"})
        student = app.test_client()
        student.post("/api/login", json={"username": "s_li", "password": "pw12345"})

        cls = teacher.post("/api/classes", json={"name": "Intro to Python"}).get_json()["class"]
        assert student.post("/api/classes/join", json={"code": cls["code"]}).status_code == 200

        assignment = teacher.post("/api/assignments", json={
            "title": "Warm-up",
            "type": "choice",
            "questions": [{"id": "q1", "type": "choice", "content": "2 + 2?",
                           "options": ["A. 4", "B. 5"], "answer": "A", "score": 10}],
        }).get_json()["assignment"]

        deadline = (date.today() + timedelta(days=1)).isoformat()
        resp = teacher.post(f"/api/assignments/{assignment['id']}/publish",
                            json={"class_id": cls["id"], "deadline": deadline})
        assert resp.status_code == 200

        # Hold the grading job so the intermediate state is observable.
        jobs = []
        monkeypatch.setattr(tasks, "enqueue_in",
                            lambda delay, func, *args, **kwargs: jobs.append((func, args, kwargs)))

        resp = student.post(f"/api/assignments/{assignment['id']}/submit",
                            json={"answers": {"q1": "A"}, "code": ""})
        assert resp.status_code == 200
        submission = resp.get_json()["submission"]
        assert submission["status"] == "submitted"
        assert len(jobs) == 1

        fake_llm.reply(MODEL_REPLY)
        func, args, kwargs = jobs.pop()
        with app.app_context():
            func(*args, **kwargs)

        me = student.get("/api/users/me").get_json()["user"]
        view = teacher.get(f"/api/assignments/{assignment['id']}/student/{me['id']}").get_json()
        graded = view["submission"]
        assert graded["status"] == "graded"
        assert graded["total_score"] == 10
        assert graded["ai_feedback"] == "ok"
        assert graded["question_scores"] == {"q1": 10}
        assert graded["question_feedback"] == {"q1": "correct"}

        mine = student.get("/api/my/assignments").get_json()["assignments"]
        assert mine[0]["submission_status"] == "graded"
