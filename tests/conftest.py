import re

import pytest

from dice_game import DiceParser, GameController, UnbiasedSampler

EXAMPLE_DICE = ["2,2,4,4,9,9", "1,1,6,6,8,8", "3,3,5,5,7,7"]

_OPTION_LINE = re.compile(r"^(\d+) - ", re.MULTILINE)


class ScriptedUI:
    """Feeds queued replies (or a responder callable) and records everything shown."""

    def __init__(self, replies=(), responder=None):
        self.replies = list(replies)
        self.responder = responder
        self.prompts = []
        self.messages = []
        self.closed = False

    def display_message(self, text):
        self.messages.append(text)

    def ask(self, prompt):
        self.prompts.append(prompt)
        if self.responder is not None:
            return self.responder(prompt)
        if not self.replies:
            raise EOFError
        return self.replies.pop(0)

    def close(self):
        self.closed = True

    @property
    def output(self):
        return "\n".join(self.messages)


class ScriptedSampler(UnbiasedSampler):
    """Returns queued values instead of random ones; records every requested range."""

    def __init__(self, values):
        super().__init__()
        self.values = list(values)
        self.calls = []

    def generate_in_range(self, min_val, max_val):
        self.calls.append((min_val, max_val))
        value = self.values.pop(0)
        assert min_val <= value <= max_val
        return value


def first_listed_option(prompt):
    return _OPTION_LINE.search(prompt).group(1)


@pytest.fixture
def example_dice():
    return DiceParser.parse(EXAMPLE_DICE)


@pytest.fixture
def scripted_match(example_dice):
    """Build (controller, state, ui) for a match driven by scripted replies and sampler values."""

    def build(replies=(), sampler_values=(), dice=None, responder=None):
        ui = ScriptedUI(replies, responder)
        controller = GameController(dice if dice is not None else example_dice, ui)
        state = controller.new_match(ScriptedSampler(sampler_values))
        return controller, state, ui

    return build
