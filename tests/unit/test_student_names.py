import pytest

from bulk_grader.domain.names import infer_student_name


@pytest.mark.unit
@pytest.mark.parametrize(
    ("filename", "expected"),
    [
        ("John_Doe_Presentation.mp4", "John Doe"),
        ("mary-smith-final.mov", "Mary Smith"),
        ("alex_jones_20240915.mp4", "Alex Jones"),
        ("SAM_LEE_v2.m4a", "Sam Lee"),
        ("recording.mp4", "Recording"),
        ("___.mp4", "___"),
    ],
)
def test_infer_student_name(filename: str, expected: str) -> None:
    assert infer_student_name(filename) == expected
