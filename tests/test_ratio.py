import pytest

from kepler.ratio import get_energy_ratio, get_sum_metric_values


def test_sum_of_empty_matrix():
    assert get_sum_metric_values([]) == []


def test_sum_single_row_is_row():
    assert get_sum_metric_values([[1.5, 2.5, 3.0]]) == [1.5, 2.5, 3.0]


def test_sum_columns():
    assert get_sum_metric_values([[1, 2], [3, 4]]) == [4.0, 6.0]


def test_sum_preserves_total():
    matrix = [[1.0, 2.0, 3.0], [4.0, 5.0, 6.0], [7.0, 8.0, 9.0]]
    sums = get_sum_metric_values(matrix)
    assert len(sums) == 3
    assert sum(sums) == sum(sum(row) for row in matrix)


def test_sum_rejects_longer_row():
    with pytest.raises(ValueError):
        get_sum_metric_values([[1.0], [1.0, 2.0]])


def test_ratio_three_equal_containers():
    # 25 mJ of dynamic package energy shared by three containers of equal usage
    assert get_energy_ratio(100, 300, 25, 3) == 9


def test_ratio_rounds_up():
    exact = (1 / 3) * 10
    result = get_energy_ratio(1, 3, 10, 5)
    assert exact <= result < exact + 1


def test_ratio_even_split_without_usage():
    exact = 10 / 3
    result = get_energy_ratio(5, 0, 10, 3)
    assert exact <= result < exact + 1


def test_ratio_full_usage_gets_all_energy():
    assert get_energy_ratio(50, 50, 42, 7) == 42


def test_ratio_even_split_with_no_workloads_raises():
    with pytest.raises(ZeroDivisionError):
        get_energy_ratio(0, 0, 10, 0)