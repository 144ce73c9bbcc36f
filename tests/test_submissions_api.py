"""
HTTP tests for the submission endpoints.

These drive the real FastAPI app with a session cookie, covering the
candidate flow (start, draft, finalize, read) and the admin actions
(grade, release, delete), plus the {"error": ...} shape of failures.
"""

from conftest import create_exam, login, mcq, theory
from exam_grading.models import ResultRelease


def start_and_submit(client, exam_id, answers):
    started = client.post("/attempts/start", json={"exam_id": exam_id})
    assert started.status_code == 200, started.text
    submission_id = started.json()["submission_id"]
    response = client.post(
        "/submissions", json={"submission_id": submission_id, "answers": answers, "time_spent_ms": 1200}
    )
    assert response.status_code == 200, response.text
    return submission_id, response.json()


class TestAuth:
    def test_login_and_me(self, client, candidate_user):
        response = login(client, "Alice@Example.com ")
        assert response.json()["role"] == "CANDIDATE"

        me = client.get("/auth/me")
        assert me.status_code == 200
        assert me.json()["email"] == "alice@example.com"

    def test_bad_password_is_unauthorized(self, client, candidate_user):
        response = client.post("/auth/login", json={"email": "alice@example.com", "password": "nope"})

        assert response.status_code == 401
        assert response.json() == {"error": "Invalid email or password"}

    def test_logout_drops_identity(self, client, candidate_user):
        login(client, "alice@example.com")
        client.post("/auth/logout")

        assert client.get("/auth/me").status_code == 401

    def test_unauthenticated_requests_rejected(self, client, mcq_exam):
        exam_id, _ = mcq_exam

        for response in (
            client.post("/attempts/start", json={"exam_id": exam_id}),
            client.get("/submissions/1"),
            client.post("/submissions/release-all"),
        ):
            assert response.status_code == 401
            assert "error" in response.json()


class TestCandidateFlow:
    def test_start_draft_finalize(self, client, candidate_user, mcq_exam):
        exam_id, [q1] = mcq_exam
        login(client, "alice@example.com")

        started = client.post("/attempts/start", json={"exam_id": exam_id}).json()
        assert started["resumed"] is False
        assert started["answers_draft"] == {}

        draft = client.post("/submissions/draft", json={"submission_id": started["submission_id"], "answers": {str(q1): "A"}})
        assert draft.status_code == 200
        assert draft.json()["success"] is True

        resumed = client.post("/attempts/start", json={"exam_id": exam_id}).json()
        assert resumed["resumed"] is True
        assert resumed["submission_id"] == started["submission_id"]
        assert resumed["answers_draft"] == {str(q1): "A"}

        final = client.post(
            "/submissions", json={"submission_id": started["submission_id"], "answers": {str(q1): " b "}}
        )
        body = final.json()
        assert final.status_code == 200
        assert body["status"] == "GRADED"
        assert body["score"] == 10
        assert body["results_released"] is True
        assert body["answers_draft"] == {}

    def test_finalize_by_exam_id(self, client, candidate_user, mcq_exam):
        exam_id, [q1] = mcq_exam
        login(client, "alice@example.com")

        response = client.post("/submissions", json={"exam_id": exam_id, "answers": {str(q1): "B"}})

        assert response.status_code == 200
        assert response.json()["score"] == 10

    def test_finalize_without_target_is_bad_request(self, client, candidate_user):
        login(client, "alice@example.com")

        response = client.post("/submissions", json={"answers": {}})

        assert response.status_code == 400
        assert response.json() == {"error": "submission_id or exam_id is required"}

    def test_second_finalize_and_late_draft_are_conflicts(self, client, candidate_user, mcq_exam):
        exam_id, [q1] = mcq_exam
        login(client, "alice@example.com")
        submission_id, _ = start_and_submit(client, exam_id, {str(q1): "B"})

        again = client.post("/submissions", json={"submission_id": submission_id, "answers": {str(q1): "A"}})
        draft = client.post("/submissions/draft", json={"submission_id": submission_id, "answers": {str(q1): "A"}})

        assert again.status_code == 409
        assert draft.status_code == 409
        assert draft.json() == {"error": "Submission already finalized"}

    def test_unpublished_exam_is_forbidden(self, client, candidate_user):
        exam_id, _ = create_exam([mcq()], published=False)
        login(client, "alice@example.com")

        response = client.post("/attempts/start", json={"exam_id": exam_id})

        assert response.status_code == 403
        assert response.json() == {"error": "Exam is not available"}

    def test_malformed_body_is_bad_request(self, client, candidate_user):
        login(client, "alice@example.com")

        response = client.post("/attempts/start", json={"exam_id": "not-a-number"})

        assert response.status_code == 400
        assert response.json()["error"].startswith("exam_id:")

    def test_negative_time_spent_rejected(self, client, candidate_user, mcq_exam):
        exam_id, _ = mcq_exam
        login(client, "alice@example.com")

        response = client.post("/submissions", json={"exam_id": exam_id, "answers": {}, "time_spent_ms": -5})

        assert response.status_code == 400

    def test_missing_submission_is_not_found(self, client, candidate_user):
        login(client, "alice@example.com")

        response = client.get("/submissions/999999")

        assert response.status_code == 404
        assert "error" in response.json()

    def test_other_candidate_cannot_read(self, client, candidate_user, other_candidate, mcq_exam):
        exam_id, [q1] = mcq_exam
        login(client, "alice@example.com")
        submission_id, _ = start_and_submit(client, exam_id, {str(q1): "B"})

        login(client, "bob@example.com")
        response = client.get(f"/submissions/{submission_id}")

        assert response.status_code == 403
        assert response.json() == {"error": "Access denied"}

    def test_history_mode(self, client, candidate_user, mcq_exam):
        exam_id, [q1] = mcq_exam
        login(client, "alice@example.com")
        submission_id, _ = start_and_submit(client, exam_id, {str(q1): "B"})

        history = client.get("/submissions", params={"mode": "history"})

        assert history.status_code == 200
        assert [item["id"] for item in history.json()] == [submission_id]

    def test_candidate_cannot_use_admin_listing(self, client, candidate_user):
        login(client, "alice@example.com")

        assert client.get("/submissions").status_code == 403


class TestDelayedRelease:
    def test_results_hidden_until_admin_release(self, client, candidate_user, admin_user, delayed_exam):
        """
        Given a DELAYED exam with a THEORY question,
        the candidate sees no per-question results or answer keys until an admin releases them.
        """
        exam_id, [q1, q2] = delayed_exam
        login(client, "alice@example.com")
        submission_id, finalized = start_and_submit(client, exam_id, {str(q1): "B", str(q2): "essay"})

        assert finalized["results_released"] is False
        assert "question_results" not in finalized
        assert all("correct_answer" not in q for q in finalized["exam"]["questions"])

        login(client, "admin@example.com")
        graded = client.post(f"/submissions/{submission_id}/grade", json={"question_id": q2, "result": {"score": 4}})
        assert graded.status_code == 200
        assert graded.json()["status"] == "GRADED"
        assert graded.json()["score"] == 14

        released = client.post(f"/submissions/{submission_id}/release")
        assert released.json() == {"success": True, "results_released": True}

        login(client, "alice@example.com")
        view = client.get(f"/submissions/{submission_id}").json()
        assert view["score"] == 14
        assert view["question_results"][str(q2)]["score"] == 4
        assert [q["correct_answer"] for q in view["exam"]["questions"]] == ["B", "Model answer"]

    def test_release_can_be_withdrawn(self, client, candidate_user, admin_user, delayed_exam):
        exam_id, [q1, _] = delayed_exam
        login(client, "alice@example.com")
        submission_id, _ = start_and_submit(client, exam_id, {str(q1): "B"})

        login(client, "admin@example.com")
        client.post(f"/submissions/{submission_id}/release")
        withdrawn = client.post(f"/submissions/{submission_id}/release", json={"released": False})

        assert withdrawn.json()["results_released"] is False

    def test_in_progress_attempt_release_is_conflict(self, client, candidate_user, admin_user, delayed_exam):
        exam_id, _ = delayed_exam
        login(client, "alice@example.com")
        submission_id = client.post("/attempts/start", json={"exam_id": exam_id}).json()["submission_id"]

        login(client, "admin@example.com")
        response = client.post(f"/submissions/{submission_id}/release")

        assert response.status_code == 409
        assert response.json() == {"error": "Submission has not been finalized"}

    def test_candidate_cannot_release(self, client, candidate_user, delayed_exam):
        exam_id, [q1, _] = delayed_exam
        login(client, "alice@example.com")
        submission_id, _ = start_and_submit(client, exam_id, {str(q1): "B"})

        response = client.post(f"/submissions/{submission_id}/release")

        assert response.status_code == 403


class TestAdminActions:
    def test_grade_validation_errors(self, client, candidate_user, admin_user, mixed_exam):
        exam_id, [q1, q2] = mixed_exam
        login(client, "alice@example.com")
        submission_id, _ = start_and_submit(client, exam_id, {str(q1): "B", str(q2): "essay"})

        login(client, "admin@example.com")
        too_high = client.post(f"/submissions/{submission_id}/grade", json={"question_id": q2, "result": {"score": 50}})
        wrong_type = client.post(f"/submissions/{submission_id}/grade", json={"question_id": q1, "result": {"score": 1}})
        negative = client.post(f"/submissions/{submission_id}/grade", json={"question_id": q2, "result": {"score": -1}})

        assert too_high.status_code == 400
        assert wrong_type.status_code == 400
        assert negative.status_code == 400

    def test_review_after_grading(self, client, candidate_user, admin_user, mcq_exam):
        exam_id, [q1] = mcq_exam
        login(client, "alice@example.com")
        submission_id, _ = start_and_submit(client, exam_id, {str(q1): "B"})

        login(client, "admin@example.com")
        response = client.post(f"/submissions/{submission_id}/review")

        assert response.json() == {"success": True, "status": "REVIEWED"}

    def test_regrade_endpoint_reports_no_change(self, client, candidate_user, admin_user, mcq_exam):
        exam_id, [q1] = mcq_exam
        login(client, "alice@example.com")
        submission_id, _ = start_and_submit(client, exam_id, {str(q1): "B"})

        login(client, "admin@example.com")
        response = client.post(f"/submissions/{submission_id}/regrade")

        assert response.status_code == 200
        assert response.json()["changed"] is False
        assert response.json()["submission"]["score"] == 10

    def test_regrade_all_summary(self, client, candidate_user, superadmin_user, mcq_exam):
        exam_id, [q1] = mcq_exam
        login(client, "alice@example.com")
        start_and_submit(client, exam_id, {str(q1): "B"})

        login(client, "root@example.com")
        response = client.post("/submissions/regrade-all")

        assert response.json() == {"success": True, "processed": 1, "changed": 0, "failed": 0}

    def test_release_all_and_exam_release(self, client, candidate_user, other_candidate, admin_user):
        first_exam, [fq] = create_exam([mcq()], result_release=ResultRelease.DELAYED)
        second_exam, [sq] = create_exam([mcq(), theory()], result_release=ResultRelease.DELAYED)
        login(client, "alice@example.com")
        start_and_submit(client, first_exam, {str(fq): "B"})
        start_and_submit(client, second_exam, {str(sq): "B"})
        login(client, "bob@example.com")
        start_and_submit(client, second_exam, {str(sq): "A"})

        login(client, "admin@example.com")
        by_exam = client.post(f"/exams/{second_exam}/release")
        rest = client.post("/submissions/release-all")

        assert by_exam.json() == {"success": True, "released": 2}
        assert rest.json() == {"success": True, "released": 1}

    def test_admin_listing_with_filters(self, client, candidate_user, admin_user, mixed_exam):
        exam_id, [q1, _] = mixed_exam
        login(client, "alice@example.com")
        start_and_submit(client, exam_id, {str(q1): "B"})

        login(client, "admin@example.com")
        response = client.get(
            "/submissions", params={"exam_id": exam_id, "status": "PENDING_MANUAL_REVIEW", "limit": 10}
        )

        body = response.json()
        assert response.status_code == 200
        assert body["pagination"]["total"] == 1
        assert body["data"][0]["candidate"]["email"] == "alice@example.com"

    def test_bulk_and_single_delete(self, client, candidate_user, admin_user, mcq_exam):
        exam_id, [q1] = mcq_exam
        login(client, "alice@example.com")
        first, _ = start_and_submit(client, exam_id, {str(q1): "B"})
        second, _ = start_and_submit(client, exam_id, {str(q1): "A"})
        third, _ = start_and_submit(client, exam_id, {str(q1): "C"})

        login(client, "admin@example.com")
        bulk = client.delete("/submissions", params={"ids": f"{first},{second}"})
        single = client.delete(f"/submissions/{third}")

        assert bulk.json() == {"success": True, "deleted": 2}
        assert single.json() == {"success": True}
        assert client.get(f"/submissions/{third}").status_code == 404

    def test_bulk_delete_requires_ids(self, client, admin_user):
        login(client, "admin@example.com")

        assert client.delete("/submissions").status_code == 400
        assert client.delete("/submissions", params={"ids": "1,x"}).status_code == 400


def test_wrong_method_uses_error_shape(client):
    response = client.put("/submissions/1")

    assert response.status_code == 405
    assert "error" in response.json()


def test_health(client):
    assert client.get("/health").json() == {"status": "ok"}
