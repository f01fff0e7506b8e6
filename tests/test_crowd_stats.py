import pytest

from crowd_stats import AggregationEngine


@pytest.fixture
def engine():
    return AggregationEngine()


def test_zero_faces_leaves_every_aggregate_unset(engine):
    stats = engine.summarize([])

    assert stats.people_count == 0
    assert stats.average_age is None
    assert stats.male_percentage is None
    assert stats.female_percentage is None
    assert stats.primary_emotion is None
    assert stats.primary_emotion_percentage is None


def test_gender_split_three_to_one(engine, make_face):
    faces = [make_face(gender="Male") for _ in range(3)] + [make_face(gender="Female")]

    stats = engine.summarize(faces)

    assert stats.male_percentage == 75
    assert stats.female_percentage == 25


def test_gender_percentages_ignore_unknown_and_round_independently(engine, make_face):
    faces = [
        make_face(gender="Male"),
        make_face(gender="Female"),
        make_face(gender="Female"),
        make_face(gender="Unknown"),
        make_face(),
    ]

    stats = engine.summarize(faces)

    # 1/3 -> 33.3 and 2/3 -> 66.7, so the pair sums to 100 only by luck
    assert stats.male_percentage == 33
    assert stats.female_percentage == 67
    assert stats.people_count == 5


def test_gender_percentages_round_halves_up(engine, make_face):
    faces = [make_face(gender="Male")] + [make_face(gender="Female") for _ in range(7)]

    stats = engine.summarize(faces)

    # 12.5 and 87.5 both round up, summing to 101
    assert stats.male_percentage == 13
    assert stats.female_percentage == 88


def test_no_known_gender_gives_no_percentages(engine, make_face):
    stats = engine.summarize([make_face(gender="Unknown")])

    assert stats.male_percentage is None
    assert stats.female_percentage is None


def test_average_age_uses_range_midpoints(engine, make_face):
    faces = [make_face(age=(20, 30)), make_face(age=(31, 40)), make_face()]

    stats = engine.summarize(faces)

    assert stats.average_age == pytest.approx(30.25)


def test_primary_emotion_percentage_is_over_headcount(engine, make_face):
    faces = [
        make_face(emotions=[("HAPPY", 90), ("CALM", 5)]),
        make_face(emotions=[("HAPPY", 60), ("SAD", 30)]),
        make_face(emotions=[("CALM", 70)]),
        make_face(),
    ]

    stats = engine.summarize(faces)

    assert stats.primary_emotion == "HAPPY"
    assert stats.primary_emotion_percentage == 50


def test_per_face_tie_keeps_first_listed_emotion(engine, make_face):
    faces = [make_face(emotions=[("SAD", 50), ("HAPPY", 50)])]

    assert engine.summarize(faces).primary_emotion == "SAD"


def test_frame_tie_keeps_first_observed_emotion(engine, make_face):
    faces = [
        make_face(emotions=[("SURPRISED", 80)]),
        make_face(emotions=[("ANGRY", 80)]),
        make_face(emotions=[("ANGRY", 70)]),
        make_face(emotions=[("SURPRISED", 60)]),
    ]

    stats = engine.summarize(faces)

    assert stats.primary_emotion == "SURPRISED"
    assert stats.primary_emotion_percentage == 50


def test_emotion_tally_preserves_observation_order(engine, make_face):
    faces = [
        make_face(emotions=[("CALM", 90)]),
        make_face(emotions=[("HAPPY", 90)]),
        make_face(emotions=[("CALM", 90)]),
    ]

    assert list(engine.emotion_tally(faces).items()) == [("CALM", 2), ("HAPPY", 1)]


def test_faces_without_emotions_give_no_primary_emotion(engine, make_face):
    stats = engine.summarize([make_face(gender="Male"), make_face(emotions=[])])

    assert stats.people_count == 2
    assert stats.primary_emotion is None
    assert stats.primary_emotion_percentage is None
