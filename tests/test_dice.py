import pytest

from dice_game import ConfigurationError, DiceParser, DiceSet, Die, FaceIndexError


class TestDie:
    def test_faces_and_values(self):
        die = Die([2, -1, 9])
        assert die.face_count() == 3
        assert len(die) == 3
        assert die.faces == (2, -1, 9)
        assert [die.value_at(i) for i in range(3)] == [2, -1, 9]

    @pytest.mark.parametrize("index", [-1, 3, 100])
    def test_value_at_out_of_range(self, index):
        with pytest.raises(FaceIndexError):
            Die([1, 2, 3]).value_at(index)

    def test_rendering_keeps_original_order(self):
        assert str(Die([9, 1, 5])) == "9,1,5"

    def test_same_faces_are_different_dice(self):
        assert Die([1, 2]) != Die([1, 2])

    def test_faces_are_copied(self):
        faces = [1, 2, 3]
        die = Die(faces)
        faces.append(4)
        assert die.face_count() == 3

    def test_needs_a_face(self):
        with pytest.raises(ValueError):
            Die([])


class TestDiceSet:
    def test_needs_three_dice(self):
        with pytest.raises(ConfigurationError):
            DiceSet([Die([1]), Die([2])])

    def test_face_counts_must_match(self):
        with pytest.raises(ConfigurationError, match="Expected 2 but die #2 has 3"):
            DiceSet([Die([1, 2]), Die([3, 4]), Die([5, 6, 7])])

    def test_index_and_remaining_go_by_identity(self):
        a, b, c = Die([1, 1]), Die([1, 1]), Die([2, 2])
        dice = DiceSet([a, b, c])
        assert dice.index_of(b) == 1
        assert dice.remaining(b) == [a, c]
        assert dice.remaining(a, None) == [b, c]
        assert dice.face_count == 2
        with pytest.raises(ValueError):
            dice.index_of(Die([1, 1]))


class TestDiceParser:
    def test_parses_example_configuration(self, example_dice):
        assert len(example_dice) == 3
        assert [str(d) for d in example_dice] == ["2,2,4,4,9,9", "1,1,6,6,8,8", "3,3,5,5,7,7"]

    def test_accepts_spaces_and_negative_faces(self):
        dice = DiceParser.parse([" -1, 2", "3 ,4", "5,6"])
        assert dice[0].faces == (-1, 2)

    def test_not_enough_dice(self):
        with pytest.raises(ConfigurationError, match="at least three dice"):
            DiceParser.parse(["1,2", "3,4"])

    @pytest.mark.parametrize("arg", ["1,a,3", "1,2.5,3", "1,,3", "1,2,"])
    def test_non_integer_face(self, arg):
        with pytest.raises(ConfigurationError, match="integer"):
            DiceParser.parse(["1,2,3", arg, "4,5,6"])

    def test_empty_die(self):
        with pytest.raises(ConfigurationError, match="no faces"):
            DiceParser.parse(["1,2", "", "3,4"])

    def test_inconsistent_faces(self):
        with pytest.raises(ConfigurationError, match="same number of faces"):
            DiceParser.parse(["1,2,3", "1,2", "4,5,6"])

    def test_error_text_includes_example_usage(self, monkeypatch):
        monkeypatch.setattr(ConfigurationError, "_invocation_command", "py")
        text = str(ConfigurationError.not_enough_dice(1))
        assert "Argument Error: Please specify at least three dice (got 1)." in text
        assert "Example usage:" in text
        assert "py " in text
        assert "2,2,4,4,9,9 1,1,6,6,8,8 3,3,5,5,7,7" in text
