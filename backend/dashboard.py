"""Student dashboard cards and the per-assessment leaderboard."""
from typing import Any, Dict, List

from grading import round_half_up
from review import is_completed
from submissions import chances_remaining


def build_dashboard(
    assessments: List[Dict[str, Any]],
    user_doc: Dict[str, Any],
    submissions: List[Dict[str, Any]],
) -> Dict[str, Any]:
    """Assessment cards (incomplete first, then newest) plus headline stats.

    Completion entries on the user are authoritative; raw submissions only
    feed the attempt counters of assessments that are still open.
    """
    completed_map = user_doc.get("assessments_completed") or {}

    cards = []
    for assessment in assessments:
        assessment_id = assessment["id"]
        completed = is_completed(user_doc, assessment_id)
        entry = completed_map.get(assessment_id) or {}
        subs = [] if completed else [s for s in submissions if s.get("assessment_id") == assessment_id]
        used = len(subs)

        cards.append({
            "id": assessment_id,
            "title": assessment.get("title", ""),
            "description": assessment.get("description", ""),
            "courseId": assessment.get("course_id"),
            "difficulty": assessment.get("difficulty"),
            "timeLimit": assessment.get("time_limit"),
            "questionCount": len(assessment.get("questions") or []),
            "createdAt": assessment.get("created_at"),
            "isCompleted": completed,
            "userScore": entry.get("score") if completed else max((s.get("score") or 0 for s in subs), default=0),
            "avgExecMs": entry.get("avg_exec_ms", 0) if completed else None,
            "completedAt": entry.get("completed_at") if completed else None,
            "chancesUsed": used,
            "chancesRemaining": chances_remaining(assessment.get("chances") or 1, used),
            "canRetake": not completed and used > 0,
        })

    cards.sort(key=lambda c: c["createdAt"] or "", reverse=True)
    cards.sort(key=lambda c: c["isCompleted"])

    scores = [float(v.get("score") or 0) for v in completed_map.values() if isinstance(v, dict)]
    total_time_spent = sum(s.get("time_spent") or 0 for s in submissions)
    return {
        "assessments": cards,
        "stats": {
            "totalAssessments": len(assessments),
            "completedAssessments": len(scores),
            "averageScore": round_half_up(sum(scores) / len(scores)) if scores else 0,
            "totalTimeSpent": round_half_up(total_time_spent / 60),
        },
    }


def build_leaderboard(users: List[Dict[str, Any]], assessment_id: str) -> List[Dict[str, Any]]:
    """Ranked by score; ties go to the faster average execution, then by name."""
    rows = []
    for user in users:
        if not is_completed(user, assessment_id):
            continue
        entry = user["assessments_completed"][assessment_id]
        rows.append({
            "userId": user["id"],
            "name": user.get("name", ""),
            "score": entry["score"],
            "avgExecMs": entry.get("avg_exec_ms") or 0,
            "completedAt": entry.get("completed_at"),
        })

    rows.sort(key=lambda r: (-r["score"], r["avgExecMs"], r["name"]))
    for rank, row in enumerate(rows, start=1):
        row["rank"] = rank
    return rows
