"""
기본 포인트 규칙 / 마일스톤 임계값 시드 스크립트

이미 존재하는 규칙과 임계값은 건드리지 않으므로 여러 번 실행해도 안전합니다.
--dry-run 으로 실행하면 생성될 개수만 출력하고 롤백합니다.
"""

import os
import sys

sys.path.append(os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from userapi.database.session import get_db_context
from userapi.models.points import MilestoneKind, MilestoneThreshold, PointRule

# (action_type, points, description, daily cap, lifetime cap, cooldown minutes, multiplier eligible)
DEFAULT_RULES = [
    ("review_submitted", 10, "Review submitted", 5, None, None, True),
    ("review_helpful_vote", 1, "Review marked helpful", 20, None, None, True),
    ("daily_login", 1, "Daily login", 1, None, None, False),
    ("profile_completed", 50, "Profile completed", None, 1, None, False),
    ("photo_uploaded", 2, "Photo uploaded", 10, None, 5, True),
    ("referral_signup", 100, "Referred user signed up", None, None, None, False),
    ("business_check_in", 5, "Checked in at a business", 3, None, 60, True),
]

DEFAULT_MILESTONES = [
    (MilestoneKind.STREAK, 100, 100),
    (MilestoneKind.REVIEW_COUNT, 25, 20),
    (MilestoneKind.REVIEW_COUNT, 50, 50),
    (MilestoneKind.REVIEW_COUNT, 100, 100),
    (MilestoneKind.HELPFUL_VOTES, 100, 50),
]


def seed_point_rules(db) -> int:
    existing = {action for (action,) in db.query(PointRule.action_type).all()}
    created = 0
    for action_type, points, description, daily, total, cooldown, eligible in DEFAULT_RULES:
        if action_type in existing:
            continue
        db.add(
            PointRule(
                action_type=action_type,
                points_value=points,
                description=description,
                max_daily_occurrences=daily,
                max_total_occurrences=total,
                cooldown_minutes=cooldown,
                multiplier_eligible=eligible,
                is_active=True,
            )
        )
        created += 1
    return created


def seed_milestone_thresholds(db) -> int:
    existing = {
        (kind, threshold)
        for kind, threshold in db.query(
            MilestoneThreshold.kind, MilestoneThreshold.threshold
        ).all()
    }
    created = 0
    for kind, threshold, points in DEFAULT_MILESTONES:
        if (kind.value, threshold) in existing:
            continue
        db.add(
            MilestoneThreshold(
                kind=kind.value, threshold=threshold, points_value=points, is_active=True
            )
        )
        created += 1
    return created


def main():
    dry_run = "--dry-run" in sys.argv[1:]
    try:
        with get_db_context(commit=not dry_run) as db:
            rules = seed_point_rules(db)
            milestones = seed_milestone_thresholds(db)
        prefix = "🔍 [dry run] " if dry_run else "✅ "
        print(f"{prefix}포인트 규칙 {rules}개, 마일스톤 임계값 {milestones}개 생성")
    except Exception as e:
        print(f"❌ 시드 데이터 생성 실패: {str(e)}")
        raise


if __name__ == "__main__":
    main()
