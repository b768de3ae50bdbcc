"""Shared fixtures: a scripted console and a pinned random source."""

import pytest

from dice_game import CryptoProvider, Die, GameUI


class ScriptedConsole:
    """Feeds canned answers to GameUI and records everything it prints."""

    def __init__(self, answers):
        self.answers = list(answers)
        self.lines = []
        self.prompts = []

    def input(self, prompt=""):
        self.prompts.append(prompt)
        if not self.answers:
            raise EOFError("script exhausted")
        return self.answers.pop(0)

    def print(self, text=""):
        self.lines.append(str(text))

    @property
    def output(self):
        return "\n".join(self.lines)

    def ui(self):
        return GameUI(input_func=self.input, output_func=self.print)


class FixedCrypto(CryptoProvider):
    """Returns queued draws in order; a None entry (or an empty queue) falls back to secrets."""

    def __init__(self, draws=()):
        self.draws = list(draws)
        self.requests = []

    def generate_secure_random(self, max_val):
        self.requests.append(max_val)
        value = self.draws.pop(0) if self.draws else None
        if value is None:
            return super().generate_secure_random(max_val)
        assert 0 <= value < max_val
        return value


@pytest.fixture
def console():
    return ScriptedConsole


@pytest.fixture
def fixed_crypto():
    return FixedCrypto


@pytest.fixture
def classic_dice():
    return [Die([2, 2, 4, 4, 9, 9]), Die([6, 8, 1, 1, 8, 6]), Die([7, 5, 3, 7, 5, 3])]


@pytest.fixture
def constant_dice():
    return [Die([1] * 6), Die([0] * 6), Die([2] * 6)]
