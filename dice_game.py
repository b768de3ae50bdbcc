
import logging
import os
import sys
import secrets
import hmac
import hashlib
from dataclasses import dataclass, replace
from enum import Enum
from typing import Callable, Optional, Union
from tabulate import tabulate

logger = logging.getLogger(__name__)

# ==============================================================================
# 0. Configuration
# ==============================================================================

MIN_DICE = 3
KEY_SIZE_BYTES = 32
FIRST_MOVE_RANGE = 2

LOG_LEVEL_ENV_VAR = "DICE_GAME_LOG_LEVEL"
DEFAULT_LOG_LEVEL = "WARNING"
LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"

HELP = "?"
FAREWELL = "Thanks for playing!"

# ==============================================================================
# 1. Error Handling Classes
# ==============================================================================

class ConfigurationError(Exception):
    """
    Raised for a malformed startup configuration (dice arguments, log level).
    Provides a formatted message including an example of correct usage.
    """
    _invocation_command = "python"

    @staticmethod
    def set_invocation_command(command: str):
        """Sets the command used to run the script (e.g., 'python' or 'py')."""
        ConfigurationError._invocation_command = command

    def __init__(self, message: str):
        self.message = message
        super().__init__(self.message)

    def __str__(self) -> str:
        script_name = sys.argv[0] if sys.argv else 'dice_game.py'
        example = (
            f"{ConfigurationError._invocation_command} {script_name} "
            f"2,2,4,4,9,9 6,8,1,1,8,6 7,5,3,7,5,3"
        )
        return f"\nArgument Error: {self.message}\n\nExample usage:\n{example}\n"

ConfigurationError.NOT_ENOUGH_DICE = ConfigurationError(f"Please specify at least {MIN_DICE} dice.")
ConfigurationError.NON_INTEGER_VALUE = ConfigurationError("All dice faces must be integer values.")
ConfigurationError.EMPTY_DIE = ConfigurationError("Every die must have at least one face.")


class InvalidSelection(ValueError):
    """Out-of-range or non-numeric answer at an interactive prompt."""


class InvalidState(RuntimeError):
    """A commitment was revealed without being made, or revealed twice."""


class ExitRequested(Exception):
    """The user asked to leave the game."""

# ==============================================================================
# 2. Data Structure for a Die
# ==============================================================================

class Die:
    def __init__(self, faces):
        faces = tuple(faces)
        if not faces:
            raise ConfigurationError.EMPTY_DIE
        self._faces = faces

    @property
    def faces(self) -> tuple[int, ...]:
        return self._faces

    def __str__(self) -> str:
        return ",".join(map(str, self._faces))

    def __repr__(self) -> str:
        return f"Die([{self}])"

    def __len__(self) -> int:
        return len(self._faces)


def draw_uniform_index(items, crypto_provider=None) -> int:
    """
    Uniformly random index into ``items`` (a die's faces or a list of dice),
    taken from a cryptographically secure source. Nothing is committed.
    """
    crypto = crypto_provider or CryptoProvider
    return crypto.generate_secure_random(len(items))

# ==============================================================================
# 3. Command-Line Argument Parser
# ==============================================================================

class DiceParser:
    @staticmethod
    def parse(args: list[str]) -> list[Die]:
        if len(args) < MIN_DICE:
            raise ConfigurationError.NOT_ENOUGH_DICE
        dice_list = []
        for arg in args:
            parts = arg.split(',')
            if any(not part.strip() for part in parts):
                raise ConfigurationError.EMPTY_DIE
            try:
                faces = [int(part) for part in parts]
            except ValueError:
                raise ConfigurationError.NON_INTEGER_VALUE from None
            dice_list.append(Die(faces))
        logger.debug("Parsed %d dice: %s", len(dice_list), dice_list)
        return dice_list

# ==============================================================================
# 4. Cryptographic Operations Provider
# ==============================================================================

class CryptoProvider:
    @staticmethod
    def generate_key() -> bytes:
        return secrets.token_bytes(KEY_SIZE_BYTES)

    @staticmethod
    def generate_secure_random(max_val: int) -> int:
        # randbelow is range-aware: no modulo bias
        if max_val <= 0:
            raise ValueError(f"Range must be positive, got {max_val}.")
        return secrets.randbelow(max_val)

    @staticmethod
    def calculate_hmac(key: bytes, message_int: int) -> str:
        message_bytes = str(message_int).encode('utf-8')
        h = hmac.new(key, message_bytes, hashlib.sha3_256)
        return h.hexdigest()

    @classmethod
    def verify_hmac(cls, key_hex: str, message_int: int, expected: str) -> bool:
        """Recomputes the HMAC of a revealed value and compares it to the published one."""
        actual = cls.calculate_hmac(bytes.fromhex(key_hex), message_int)
        return hmac.compare_digest(actual, expected.lower())


@dataclass
class Commitment:
    """
    A secret value bound by its HMAC.

    Only ``digest`` (and ``modulus``) may be shown before the reveal;
    ``value`` and ``key`` stay private until ``FairRandomGenerator.reveal_key``.
    """
    value: int
    key: bytes
    digest: str
    modulus: int
    revealed: bool = False

    def __repr__(self) -> str:
        return f"Commitment(modulus={self.modulus}, digest={self.digest!r}, revealed={self.revealed})"


class FairRandomGenerator:
    def __init__(self, crypto_provider: CryptoProvider):
        self.crypto = crypto_provider

    def commit(self, modulus: int) -> Commitment:
        """Picks a value in 0..modulus-1 under a fresh key and returns it with its HMAC."""
        value = self.crypto.generate_secure_random(modulus)
        key = self.crypto.generate_key()
        digest = self.crypto.calculate_hmac(key, value)
        logger.debug("Committed to a value in 0..%d (HMAC=%s)", modulus - 1, digest)
        return Commitment(value=value, key=key, digest=digest, modulus=modulus)

    def reveal_key(self, commitment: Optional[Commitment]) -> str:
        if commitment is None:
            raise InvalidState("Nothing to reveal: no commitment has been made.")
        if commitment.revealed:
            raise InvalidState(f"Commitment {commitment.digest} has already been revealed.")
        commitment.revealed = True
        key_hex = commitment.key.hex()
        logger.debug("Revealed value %d for HMAC=%s (KEY=%s)", commitment.value, commitment.digest, key_hex)
        return key_hex

    def verify_reveal(self, commitment: Commitment, key_hex: str):
        """Checks a revealed key and value against the published HMAC."""
        verified = self.crypto.verify_hmac(key_hex, commitment.value, commitment.digest)
        logger.debug("Reveal verified for HMAC=%s: %s", commitment.digest, verified)
        if not verified:
            raise InvalidState(f"Revealed value {commitment.value} does not match HMAC={commitment.digest}.")

# ==============================================================================
# 5. Probability Calculation Logic
# ==============================================================================

class ProbabilityCalculator:
    SELF_MATCHUP = 0.5

    @staticmethod
    def calculate_win_probability(die1: Die, die2: Die) -> float:
        wins = sum(1 for f1 in die1.faces for f2 in die2.faces if f1 > f2)
        total_outcomes = len(die1) * len(die2)
        return wins / total_outcomes

    @classmethod
    def calculate_matrix(cls, all_dice: list[Die]) -> list[list[float]]:
        """
        Row die's chance to beat the column die. Ties count for neither side.
        A die against itself is a coin flip by convention.
        """
        return [
            [
                cls.SELF_MATCHUP if i == j else cls.calculate_win_probability(row_die, col_die)
                for j, col_die in enumerate(all_dice)
            ]
            for i, row_die in enumerate(all_dice)
        ]

# ==============================================================================
# 6. Help Table Generation
# ==============================================================================

class HelpTableGenerator:
    @staticmethod
    def generate_table(all_dice: list[Die], calculator: ProbabilityCalculator) -> str:
        matrix = calculator.calculate_matrix(all_dice)
        headers = ["User v PC >"] + [str(i) for i in range(len(all_dice))]
        table_data = [
            [f"{i} [{die}]"] + row
            for i, (die, row) in enumerate(zip(all_dice, matrix))
        ]

        intro = (
            "\n--- Win Probability Table ---\n"
            "This table shows the probability of the User's die (rows) winning against the PC's die (columns).\n"
            "Dice are numbered as in the selection menu. Ties count as a win for neither side.\n"
        )
        return intro + tabulate(table_data, headers=headers, tablefmt="grid", floatfmt=".2f")

# ==============================================================================
# 7. Console User Interface
# ==============================================================================

class GameUI:
    def __init__(self, input_func: Optional[Callable[[str], str]] = None,
                 output_func: Optional[Callable[[str], None]] = None):
        self._input = input_func or input
        self._output = output_func or print

    def display_message(self, text: str):
        self._output(text)

    def display_commitment(self, commitment: Commitment):
        self._output(
            f"I selected a random value in the range 0..{commitment.modulus - 1} "
            f"(HMAC={commitment.digest})."
        )

    def display_key_and_move(self, key_hex: str, move: int, name: str = "My number"):
        self._output(f"{name} is {move} (KEY={key_hex}).")

    @staticmethod
    def parse_choice(raw: str, option_count: int, allow_help: bool = True) -> Union[int, str]:
        choice = raw.strip().lower()
        if choice == 'x':
            raise ExitRequested()
        if choice == HELP and allow_help:
            return HELP
        if choice.isdecimal():
            choice_int = int(choice)
            if 0 <= choice_int < option_count:
                return choice_int
        hint = f"0..{option_count - 1}, '?' or 'X'" if allow_help else f"0..{option_count - 1} or 'X'"
        raise InvalidSelection(f"Invalid choice {raw.strip()!r}. Please enter {hint}.")

    def get_user_choice(self, prompt: str, options: list[str], allow_help: bool = True) -> Union[int, str]:
        """Asks until the answer is valid. Returns the option index or HELP; raises ExitRequested on 'x'."""
        while True:
            self._output(f"\n{prompt}")
            for i, option in enumerate(options):
                self._output(f" {i} - {option}")

            self._output(" X - Exit")
            if allow_help:
                self._output(" ? - Help")

            raw = self._input("Your selection: ")
            try:
                return self.parse_choice(raw, len(options), allow_help)
            except InvalidSelection as e:
                logger.debug("Rejected input %r", raw)
                self._output(str(e))

# ==============================================================================
# 8. Provably Fair Random Number Generation
# ==============================================================================

@dataclass(frozen=True)
class ThrowResult:
    committed: int
    contribution: int
    modulus: int
    index: int
    face: Optional[int] = None


class FairInteraction:
    def __init__(self, generator: FairRandomGenerator, ui: GameUI):
        self.generator = generator
        self.ui = ui

    def determine_first_player(self) -> bool:
        """The user moves first by guessing the committed bit; no modular sum here."""
        self.ui.display_message("\nLet's determine who makes the first move.")
        commitment = self.generator.commit(FIRST_MOVE_RANGE)
        self.ui.display_commitment(commitment)

        options = [str(i) for i in range(FIRST_MOVE_RANGE)]
        user_guess = self.ui.get_user_choice("Try to guess my selection.", options, allow_help=False)

        key_hex = self.generator.reveal_key(commitment)
        self.generator.verify_reveal(commitment, key_hex)
        self.ui.display_key_and_move(key_hex, commitment.value, name="My selection")

        user_goes_first = user_guess == commitment.value
        if user_goes_first:
            self.ui.display_message("You guessed correctly! You make the first move.")
        else:
            self.ui.display_message("Wrong guess. I make the first move.")
        logger.debug("First move decided: user_goes_first=%s", user_goes_first)
        return user_goes_first

    def resolve_fair_index(self, modulus: int, prompt: str) -> ThrowResult:
        commitment = self.generator.commit(modulus)
        self.ui.display_commitment(commitment)

        options = [str(i) for i in range(modulus)]
        user_move = self.ui.get_user_choice(prompt, options, allow_help=False)

        key_hex = self.generator.reveal_key(commitment)
        self.generator.verify_reveal(commitment, key_hex)
        self.ui.display_key_and_move(key_hex, commitment.value)

        result = (commitment.value + user_move) % modulus
        self.ui.display_message(f"The result is {commitment.value} + {user_move} = {result} (mod {modulus}).")
        return ThrowResult(committed=commitment.value, contribution=user_move, modulus=modulus, index=result)

    def throw(self, die: Die, prompt: Optional[str] = None) -> ThrowResult:
        num_faces = len(die)
        result = self.resolve_fair_index(num_faces, prompt or f"Add your number modulo {num_faces}.")
        return replace(result, face=die.faces[result.index])

# ==============================================================================
# 9. Main Game Controller
# ==============================================================================

class GameState(Enum):
    START = "start"
    FIRST_MOVE_PENDING = "first_move_pending"
    ROUND_CHOOSE_DICE = "round_choose_dice"
    ROUND_HOST_THROW = "round_host_throw"
    ROUND_PLAYER_THROW = "round_player_throw"
    ROUND_COMPARE = "round_compare"
    EXIT = "exit"


@dataclass
class RoundState:
    player_die: Optional[Die] = None
    computer_die: Optional[Die] = None
    computer_throw: Optional[ThrowResult] = None
    player_throw: Optional[ThrowResult] = None


class GameController:
    def __init__(self, dice: list[Die], ui: GameUI, interaction: FairInteraction, help_gen: HelpTableGenerator):
        self.all_dice = list(dice)
        self.ui = ui
        self.interaction = interaction
        self.help_gen = help_gen
        self.state = GameState.START
        self.user_goes_first = False
        self.current_round = RoundState()
        self._handlers = {
            GameState.START: self._start,
            GameState.FIRST_MOVE_PENDING: self._determine_first_move,
            GameState.ROUND_CHOOSE_DICE: self._select_dice,
            GameState.ROUND_HOST_THROW: self._computer_throw,
            GameState.ROUND_PLAYER_THROW: self._player_throw,
            GameState.ROUND_COMPARE: self._compare,
        }

    def run(self):
        while self.state is not GameState.EXIT:
            try:
                self.state = self._handlers[self.state]()
            except ExitRequested:
                logger.debug("Exit requested in state %s", self.state.name)
                self.ui.display_message(FAREWELL)
                self.state = GameState.EXIT

    def _start(self) -> GameState:
        if len(self.all_dice) < MIN_DICE:
            raise ConfigurationError.NOT_ENOUGH_DICE
        self.ui.display_message("--- Welcome to the Non-Transitive Dice Game! ---")
        return GameState.FIRST_MOVE_PENDING

    def _determine_first_move(self) -> GameState:
        self.user_goes_first = self.interaction.determine_first_player()
        return GameState.ROUND_CHOOSE_DICE

    def _select_dice(self) -> GameState:
        self.current_round = RoundState()
        if self.user_goes_first:
            player_die = self._get_player_die_choice()
            self.ui.display_message(f"You chose the [{player_die}] dice.")
            computer_die = self._choose_computer_die()
            self.ui.display_message(f"I choose the [{computer_die}] dice.")
        else:
            computer_die = self._choose_computer_die()
            self.ui.display_message(f"I make the first move and choose the [{computer_die}] dice.")
            player_die = self._get_player_die_choice()
            self.ui.display_message(f"You chose the [{player_die}] dice.")
        self.current_round.player_die = player_die
        self.current_round.computer_die = computer_die
        return GameState.ROUND_HOST_THROW

    def _computer_throw(self) -> GameState:
        self.ui.display_message("\nIt's time for my throw.")
        result = self.interaction.throw(self.current_round.computer_die)
        self.current_round.computer_throw = result
        self.ui.display_message(f"My throw is {result.face}.")
        return GameState.ROUND_PLAYER_THROW

    def _player_throw(self) -> GameState:
        self.ui.display_message("\nIt's time for your throw.")
        result = self.interaction.throw(self.current_round.player_die)
        self.current_round.player_throw = result
        self.ui.display_message(f"Your throw is {result.face}.")
        return GameState.ROUND_COMPARE

    def _compare(self) -> GameState:
        player_roll_value = self.current_round.player_throw.face
        computer_roll_value = self.current_round.computer_throw.face
        if player_roll_value > computer_roll_value:
            self.ui.display_message(f"You won! ({player_roll_value} > {computer_roll_value})")
        elif computer_roll_value > player_roll_value:
            self.ui.display_message(f"I won! ({computer_roll_value} > {player_roll_value})")
        else:
            self.ui.display_message(f"It's a tie! ({player_roll_value} = {computer_roll_value})")
        logger.debug("Round finished: player=%d computer=%d", player_roll_value, computer_roll_value)
        return GameState.ROUND_CHOOSE_DICE

    def _choose_computer_die(self) -> Die:
        # the full set every round, so the same die may come up for both sides
        index = draw_uniform_index(self.all_dice, self.interaction.generator.crypto)
        logger.debug("Computer picked die %d", index)
        return self.all_dice[index]

    def _get_player_die_choice(self) -> Die:
        while True:
            options = [str(d) for d in self.all_dice]
            choice = self.ui.get_user_choice("Choose your dice:", options, allow_help=True)
            if choice == HELP:
                table = self.help_gen.generate_table(self.all_dice, ProbabilityCalculator)
                self.ui.display_message(table)
                continue
            return self.all_dice[choice]

# ==============================================================================
# 10. Main Execution Block
# ==============================================================================

def configure_logging(environ=None):
    environ = os.environ if environ is None else environ
    level_name = environ.get(LOG_LEVEL_ENV_VAR, DEFAULT_LOG_LEVEL).strip().upper()
    level = logging.getLevelName(level_name)
    if not isinstance(level, int):
        raise ConfigurationError(f"Unknown log level {level_name!r} in {LOG_LEVEL_ENV_VAR}.")
    logging.basicConfig(level=level, format=LOG_FORMAT, stream=sys.stderr)


def build_controller(dice: list[Die], ui: Optional[GameUI] = None,
                     crypto: Optional[CryptoProvider] = None) -> GameController:
    ui = ui or GameUI()
    generator = FairRandomGenerator(crypto or CryptoProvider())
    interaction = FairInteraction(generator, ui)
    return GameController(dice, ui, interaction, HelpTableGenerator())


def main(argv: Optional[list[str]] = None):
    try:
        # Dynamically determine the command used to invoke the script
        if 'py.exe' in sys.executable.lower():
            ConfigurationError.set_invocation_command('py')
        else:
            ConfigurationError.set_invocation_command('python')

        configure_logging()
        args = sys.argv[1:] if argv is None else argv
        dice = DiceParser.parse(args)

        controller = build_controller(dice)
        controller.run()

    except ConfigurationError as e:
        print(e, file=sys.stderr)
        sys.exit(1)
    except (KeyboardInterrupt, EOFError):
        print("\nGame interrupted. Goodbye!")
        sys.exit(0)

if __name__ == "__main__":
    main()
