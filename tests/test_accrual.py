import random
from datetime import date, timedelta

import pytest

from happy_loop.accrual import (
    CompletionGenerator,
    DayOutcome,
    OutOfOrderDayError,
    StreakAccumulator,
    accumulate,
    history_outcomes,
    trailing_window,
)
from happy_loop.models import Task, TaskLog

DAY1 = date(2025, 3, 1)


def day(offset: int) -> date:
    return DAY1 + timedelta(days=offset)


def make_catalog(count=5):
    return [Task(id=i + 1, name=f"Task {i + 1}", points=(i + 1) * 5) for i in range(count)]


def test_empty_history_has_no_points_or_streak():
    assert accumulate([]) == (0, 0)


def test_single_active_day_starts_streak():
    assert accumulate([DayOutcome(day(0), (5,))]) == (5, 1)


def test_consecutive_active_days_grow_streak():
    outcomes = [DayOutcome(day(i), (5,)) for i in range(3)]
    assert accumulate(outcomes) == (15, 3)


def test_inactive_day_between_active_days_resets_to_one():
    outcomes = [DayOutcome(day(0), (5,)), DayOutcome(day(1)), DayOutcome(day(2), (5,))]
    assert accumulate(outcomes)[1] == 1


def test_skipped_day_without_record_resets_to_one():
    outcomes = [DayOutcome(day(0), (5,)), DayOutcome(day(2), (5,))]
    assert accumulate(outcomes)[1] == 1


def test_single_inactive_day_holds_streak():
    outcomes = [DayOutcome(day(0), (5,)), DayOutcome(day(1), (5,)), DayOutcome(day(2))]
    assert accumulate(outcomes)[1] == 2


def test_second_inactive_day_breaks_streak():
    outcomes = [
        DayOutcome(day(0), (5,)),
        DayOutcome(day(1), (5,)),
        DayOutcome(day(2)),
        DayOutcome(day(3)),
    ]
    assert accumulate(outcomes)[1] == 0


def test_rejected_completion_counts_for_streak_but_not_points():
    outcomes = [DayOutcome(day(0), (0,)), DayOutcome(day(1), (0, 10))]
    assert accumulate(outcomes) == (10, 2)


def test_streak_ignores_point_values():
    flags = [True, True, False, True, True, True, False, False, True]
    low = [DayOutcome(day(i), (1,) if active else ()) for i, active in enumerate(flags)]
    high = [DayOutcome(day(i), (50, 0) if active else ()) for i, active in enumerate(flags)]
    assert accumulate(low)[1] == accumulate(high)[1] == 1


def test_same_day_twice_is_a_noop_for_streak():
    acc = StreakAccumulator()
    acc.fold(DayOutcome(day(0), (5,)))
    acc.fold(DayOutcome(day(0), (5,)))
    assert acc.totals == (10, 1)


def test_out_of_order_day_raises():
    acc = StreakAccumulator()
    acc.fold(DayOutcome(day(2), (5,)))
    with pytest.raises(OutOfOrderDayError):
        acc.fold(DayOutcome(day(1), (5,)))


def test_fold_is_idempotent_over_same_history():
    outcomes = [DayOutcome(day(i), (i,) if i % 3 else ()) for i in range(20)]
    assert accumulate(outcomes) == accumulate(list(outcomes))


def test_history_outcomes_fills_missing_days():
    logs = [
        TaskLog(kid_id=1, task_id=1, log_date=day(0), points_awarded=5),
        TaskLog(kid_id=1, task_id=2, log_date=day(0), points_awarded=0),
        TaskLog(kid_id=1, task_id=1, log_date=day(2), points_awarded=10),
    ]
    outcomes = history_outcomes(logs, through=day(4))
    assert [o.day for o in outcomes] == [day(i) for i in range(5)]
    assert [o.active for o in outcomes] == [True, False, True, False, False]
    assert accumulate(outcomes) == (15, 0)


def test_history_outcomes_stops_at_through():
    logs = [TaskLog(kid_id=1, task_id=1, log_date=day(i), points_awarded=5) for i in range(3)]
    logs.append(TaskLog(kid_id=1, task_id=2, log_date=day(7), points_awarded=20))
    outcomes = history_outcomes(logs, through=day(2))
    assert [o.day for o in outcomes] == [day(0), day(1), day(2)]
    assert accumulate(outcomes) == (15, 3)
    assert history_outcomes(logs, through=day(-1)) == []


def test_trailing_window_ends_today():
    window = trailing_window(day(29), 30)
    assert window[0] == day(0)
    assert window[-1] == day(29)
    assert len(window) == 30


def test_generator_is_reproducible_with_seed():
    catalog = make_catalog()
    window = trailing_window(day(29), 30)
    first = CompletionGenerator(random.Random(7)).generate(1, catalog, window)
    second = CompletionGenerator(random.Random(7)).generate(1, catalog, window)
    assert [d.outcome for d in first] == [d.outcome for d in second]
    assert [[c.task_id for c in d.completions] for d in first] == [
        [c.task_id for c in d.completions] for d in second
    ]


def test_generator_picks_distinct_tasks_and_caps_count():
    catalog = make_catalog(2)
    generator = CompletionGenerator(random.Random(3), tasks_per_day=(2, 5))
    days = generator.generate(1, catalog, trailing_window(day(59), 60))
    for generated in days:
        task_ids = [c.task_id for c in generated.completions]
        assert len(task_ids) == len(set(task_ids))
        assert len(task_ids) <= 2


def test_generator_respects_approval_rules():
    catalog = make_catalog()
    generator = CompletionGenerator(random.Random(11))
    days = generator.generate(1, catalog, trailing_window(day(89), 90))
    completions = [c for d in days for c in d.completions]
    assert completions
    by_id = {task.id: task for task in catalog}
    for completion in completions:
        if completion.points_awarded > 0:
            assert completion.parent_approved is True
        if completion.parent_approved is True:
            assert completion.points_awarded == by_id[completion.task_id].points
        else:
            assert completion.points_awarded == 0
        if not completion.ai_validated:
            assert completion.parent_approved is None
        if completion.evidence is not None:
            assert completion.parent_approved is not True
            assert completion.evidence.storage_path.startswith("https://placehold.co/")


def test_generator_returns_days_in_order():
    days = [day(5), day(1), day(3)]
    generated = CompletionGenerator(random.Random(1)).generate(1, make_catalog(), days)
    assert [g.day for g in generated] == [day(1), day(3), day(5)]


def test_generator_with_empty_catalog_emits_nothing():
    generator = CompletionGenerator(random.Random(1))
    assert generator.generate(1, [], trailing_window(day(9), 10)) == []


def test_generator_always_active_with_full_activity_rate():
    generator = CompletionGenerator(random.Random(5), activity_rate=1.0, tasks_per_day=(1, 1))
    days = generator.generate(1, make_catalog(), trailing_window(day(9), 10))
    assert all(len(d.completions) == 1 for d in days)
    assert accumulate(d.outcome for d in days)[1] == 10


def test_generated_points_match_fold():
    generator = CompletionGenerator(random.Random(21))
    days = generator.generate(1, make_catalog(), trailing_window(day(29), 30))
    expected = sum(c.points_awarded for d in days for c in d.completions)
    assert accumulate(d.outcome for d in days)[0] == expected
