import hashlib
import hmac
import logging
import os
import secrets
import sys
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Collection, Optional, Union

from tabulate import tabulate

logger = logging.getLogger(__name__)

EXIT_TOKEN = "x"
HELP_TOKEN = "?"
LOG_LEVEL_ENV = "DICE_GAME_LOG_LEVEL"

# ==============================================================================
# 1. Error Handling Classes
# ==============================================================================

class ConfigurationError(Exception):
    """
    Raised when the dice given on the command line cannot form a match.
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
            f"2,2,4,4,9,9 1,1,6,6,8,8 3,3,5,5,7,7"
        )
        return f"\nArgument Error: {self.message}\n\nExample usage:\n{example}\n"

    @classmethod
    def not_enough_dice(cls, count: int) -> "ConfigurationError":
        return cls(f"Please specify at least three dice (got {count}).")

    @classmethod
    def inconsistent_faces(cls, expected: int, actual: int, position: int) -> "ConfigurationError":
        return cls(
            f"All dice must have the same number of faces. "
            f"Expected {expected} but die #{position} has {actual}."
        )

    @classmethod
    def non_integer_value(cls, token: str) -> "ConfigurationError":
        return cls(f"All dice faces must be integer values, got '{token}'.")

    @classmethod
    def empty_die(cls, position: int) -> "ConfigurationError":
        return cls(f"Die #{position} has no faces.")


class ProtocolViolation(RuntimeError):
    """commit()/reveal() called out of order. Always a bug in the caller."""


class InputValidationError(ValueError):
    pass


class FaceIndexError(IndexError):
    pass

# ==============================================================================
# 2. Data Structures for Dice
# ==============================================================================

class Die:
    __slots__ = ("_faces",)

    def __init__(self, faces):
        faces = tuple(faces)
        if not faces:
            raise ValueError("A die must have at least one face.")
        self._faces = faces

    @property
    def faces(self) -> tuple[int, ...]:
        return self._faces

    def face_count(self) -> int:
        return len(self._faces)

    def value_at(self, index: int) -> int:
        if not 0 <= index < len(self._faces):
            raise FaceIndexError(
                f"Face index {index} is outside 0..{len(self._faces) - 1}."
            )
        return self._faces[index]

    def __str__(self) -> str:
        return ",".join(map(str, self._faces))

    def __repr__(self) -> str:
        return f"Die([{self}])"

    def __len__(self) -> int:
        return len(self._faces)


class DiceSet:
    MIN_DICE = 3

    def __init__(self, dice):
        dice = tuple(dice)
        if len(dice) < self.MIN_DICE:
            raise ConfigurationError.not_enough_dice(len(dice))
        expected = dice[0].face_count()
        for position, die in enumerate(dice):
            if die.face_count() != expected:
                raise ConfigurationError.inconsistent_faces(expected, die.face_count(), position)
        self._dice = dice

    @property
    def face_count(self) -> int:
        return self._dice[0].face_count()

    def index_of(self, die: Die) -> int:
        for index, candidate in enumerate(self._dice):
            if candidate is die:
                return index
        raise ValueError(f"{die!r} is not part of this dice set.")

    def remaining(self, *taken: Optional[Die]) -> list[Die]:
        """Dice not claimed by anyone yet, in their original order."""
        return [d for d in self._dice if not any(d is t for t in taken)]

    def __getitem__(self, index: int) -> Die:
        return self._dice[index]

    def __iter__(self):
        return iter(self._dice)

    def __len__(self) -> int:
        return len(self._dice)

# ==============================================================================
# 3. Command-Line Argument Parser
# ==============================================================================

class DiceParser:
    @staticmethod
    def parse(args: list[str]) -> DiceSet:
        if len(args) < DiceSet.MIN_DICE:
            raise ConfigurationError.not_enough_dice(len(args))
        dice = [DiceParser.parse_die(arg, position) for position, arg in enumerate(args)]
        return DiceSet(dice)

    @staticmethod
    def parse_die(arg: str, position: int = 0) -> Die:
        tokens = [token.strip() for token in arg.split(',')]
        if tokens == [""]:
            raise ConfigurationError.empty_die(position)
        faces = []
        for token in tokens:
            try:
                faces.append(int(token))
            except ValueError:
                raise ConfigurationError.non_integer_value(token) from None
        return Die(faces)

# ==============================================================================
# 4. Cryptographic Operations Provider
# ==============================================================================

class CryptoProvider:
    KEY_SIZE = 32

    @staticmethod
    def generate_key() -> bytes:
        return secrets.token_bytes(CryptoProvider.KEY_SIZE)

    @staticmethod
    def calculate_hmac(key: bytes, message_int: int) -> str:
        message_bytes = str(message_int).encode('utf-8')
        h = hmac.new(key, message_bytes, hashlib.sha3_256)
        return h.hexdigest().upper()


def verify_commitment(key_hex: str, value: int, digest: str) -> bool:
    """Recompute HMAC-SHA3-256(key, value) and compare it with a published digest."""
    try:
        key = bytes.fromhex(key_hex)
    except ValueError:
        return False
    expected = CryptoProvider.calculate_hmac(key, value)
    return hmac.compare_digest(expected.encode('ascii'), digest.strip().upper().encode('utf-8'))


class UnbiasedSampler:
    """
    Uniform integers over an inclusive range, drawn from a cryptographic
    byte source by rejection sampling.

    Draws the fewest bytes that can cover the range and throws away any
    draw at or above the largest multiple of the range size, so every
    value is equally likely. Fewer than half of all draws are rejected.
    """

    def __init__(self, byte_source: Callable[[int], bytes] = secrets.token_bytes):
        self._byte_source = byte_source

    @staticmethod
    def byte_width(span: int) -> int:
        # smallest w with 256**w >= span
        return ((span - 1).bit_length() + 7) // 8

    def generate_in_range(self, min_val: int, max_val: int) -> int:
        if min_val > max_val:
            raise ValueError(f"Empty range {min_val}..{max_val}.")
        span = max_val - min_val + 1
        width = self.byte_width(span)
        limit = (256 ** width // span) * span
        while True:
            value = int.from_bytes(self._byte_source(width), 'big')
            if value < limit:
                return min_val + value % span

    def choice(self, items: list):
        return items[self.generate_in_range(0, len(items) - 1)]

# ==============================================================================
# 5. Commit-Reveal Protocol
# ==============================================================================

class ProtocolState(Enum):
    IDLE = "idle"
    COMMITTED = "committed"
    REVEALED = "revealed"


@dataclass(frozen=True)
class Reveal:
    secret_value: int
    secret_key_hex: str
    peer_value: int
    modulus: int
    result: int
    digest: str

    def verify(self) -> bool:
        return verify_commitment(self.secret_key_hex, self.secret_value, self.digest)


class FairRandomProtocol:
    """
    One decision at a time: commit() publishes an HMAC of a secret value,
    reveal() adds the peer's number modulo the range and discloses the key,
    reset() wipes the secret before the next decision.

    IDLE -> COMMITTED -> REVEALED -> IDLE
    """

    def __init__(self, sampler: Optional[UnbiasedSampler] = None,
                 key_source: Callable[[], bytes] = CryptoProvider.generate_key):
        self.sampler = sampler if sampler is not None else UnbiasedSampler()
        self._key_source = key_source
        self.state = ProtocolState.IDLE
        self.digest: Optional[str] = None
        self.max_val: Optional[int] = None
        self._secret_value: Optional[int] = None
        self._secret_key: Optional[bytes] = None

    def commit(self, max_val: int) -> str:
        if self.state is not ProtocolState.IDLE:
            raise ProtocolViolation(
                f"commit() called while {self.state.value}; reset() must come first."
            )
        if max_val < 0:
            raise ValueError(f"max_val must be non-negative, got {max_val}.")
        self._secret_value = self.sampler.generate_in_range(0, max_val)
        self._secret_key = self._key_source()
        self.max_val = max_val
        self.digest = CryptoProvider.calculate_hmac(self._secret_key, self._secret_value)
        self.state = ProtocolState.COMMITTED
        logger.debug("Committed to a value in 0..%d (HMAC=%s)", max_val, self.digest)
        return self.digest

    def reveal(self, peer_value: int) -> Reveal:
        if self.state is not ProtocolState.COMMITTED:
            raise ProtocolViolation(f"reveal() called while {self.state.value}.")
        if not 0 <= peer_value <= self.max_val:
            raise InputValidationError(
                f"{peer_value} is outside 0..{self.max_val}."
            )
        modulus = self.max_val + 1
        reveal = Reveal(
            secret_value=self._secret_value,
            secret_key_hex=self._secret_key.hex().upper(),
            peer_value=peer_value,
            modulus=modulus,
            result=(self._secret_value + peer_value) % modulus,
            digest=self.digest,
        )
        self.state = ProtocolState.REVEALED
        logger.debug("Revealed %d, combined result %d", reveal.secret_value, reveal.result)
        return reveal

    def reset(self):
        self._secret_value = None
        self._secret_key = None
        self.max_val = None
        self.digest = None
        if self.state is not ProtocolState.IDLE:
            logger.debug("Protocol reset from %s", self.state.value)
        self.state = ProtocolState.IDLE

# ==============================================================================
# 6. Probability Calculation Logic
# ==============================================================================

class ProbabilityCalculator:
    @staticmethod
    def win_count(die1: Die, die2: Die) -> int:
        return sum(1 for f1 in die1.faces for f2 in die2.faces if f1 > f2)

    @staticmethod
    def calculate_win_probability(die1: Die, die2: Die) -> float:
        total_outcomes = len(die1) * len(die2)
        return ProbabilityCalculator.win_count(die1, die2) / total_outcomes if total_outcomes > 0 else 0.0

    @staticmethod
    def tie_probability(die1: Die, die2: Die) -> float:
        ties = sum(1 for f1 in die1.faces for f2 in die2.faces if f1 == f2)
        total_outcomes = len(die1) * len(die2)
        return ties / total_outcomes if total_outcomes > 0 else 0.0

    @staticmethod
    def win_percentage(die1: Die, die2: Die) -> float:
        """Win share in percent, one decimal, halves rounded up."""
        wins = ProbabilityCalculator.win_count(die1, die2)
        total_outcomes = len(die1) * len(die2)
        # tenths of a percent in integers: wins * 1000 / total, +0.5 then floor
        return (wins * 2000 + total_outcomes) // (2 * total_outcomes) / 10

    @staticmethod
    def compute(dice) -> list[list[Optional[float]]]:
        """Row-beats-column win percentages, one decimal; None on the diagonal."""
        dice = list(dice)
        return [
            [
                None if i == j
                else ProbabilityCalculator.win_percentage(row_die, col_die)
                for j, col_die in enumerate(dice)
            ]
            for i, row_die in enumerate(dice)
        ]

# ==============================================================================
# 7. Help Table Generation
# ==============================================================================

class HelpTableGenerator:
    @staticmethod
    def label(index: int, die: Die) -> str:
        return f"D{index} ({die})"

    @staticmethod
    def generate_table(dice) -> str:
        dice = list(dice)
        matrix = ProbabilityCalculator.compute(dice)
        labels = [HelpTableGenerator.label(i, d) for i, d in enumerate(dice)]
        headers = ["Dice \\ vs >"] + [f"D{i}" for i in range(len(dice))]
        table_data = []
        for label, row in zip(labels, matrix):
            table_data.append([label] + ["-" if p is None else f"{p:.1f}%" for p in row])

        intro = "\nProbabilities table (row dice beats column dice):\n"
        return intro + tabulate(table_data, headers=headers, tablefmt="grid", disable_numparse=True)

    @staticmethod
    def legend() -> str:
        return (
            "X - exit the game\n"
            "? - show this help\n"
            "Each HMAC is HMAC-SHA3-256(key, number); recompute it once the key is shown.\n"
        )

# ==============================================================================
# 8. Console User Interface
# ==============================================================================

class GameUI:
    def display_message(self, text: str):
        print(text)

    def ask(self, prompt: str) -> str:
        return input(prompt)

    def close(self):
        sys.stdout.flush()


class Reply(Enum):
    EXIT = "exit"
    HELP = "help"


def parse_reply(line: str, valid: Collection[int], claimed: Collection[int] = ()) -> Union[Reply, int]:
    token = line.strip()
    if token.lower() == EXIT_TOKEN:
        return Reply.EXIT
    if token == HELP_TOKEN:
        return Reply.HELP
    try:
        number = int(token)
    except ValueError:
        raise InputValidationError(f"'{token}' is not a number.") from None
    if number in claimed:
        raise InputValidationError(f"Option {number} is already taken.")
    if number not in valid:
        raise InputValidationError(f"{number} is not one of the listed options.")
    return number

# ==============================================================================
# 9. Match State Machine
# ==============================================================================

class Side(Enum):
    HUMAN = "human"
    AUTOMATED = "automated"


class Phase(Enum):
    ARBITRATE_FIRST_MOVE = "arbitrate first move"
    ASSIGN_DICE = "assign dice"
    ROLL_HUMAN = "roll human"
    ROLL_AUTOMATED = "roll automated"
    RESOLVE = "resolve"
    FINISHED = "finished"


class Outcome(Enum):
    HUMAN_WINS = "human wins"
    AUTOMATED_WINS = "automated wins"
    TIE = "tie"
    CANCELLED = "cancelled"
    FAILED = "failed"


@dataclass(frozen=True)
class Continue:
    pass


@dataclass(frozen=True)
class Cancelled:
    pass


@dataclass(frozen=True)
class Failed:
    reason: str


CONTINUE = Continue()
CANCELLED = Cancelled()

StepResult = Union[Continue, Cancelled, Failed]


@dataclass(eq=False)
class MatchState:
    dice: DiceSet
    protocol: FairRandomProtocol
    phase: Phase = Phase.ARBITRATE_FIRST_MOVE
    first_mover: Optional[Side] = None
    human_die: Optional[Die] = None
    automated_die: Optional[Die] = None
    human_roll_value: Optional[int] = None
    automated_roll_value: Optional[int] = None
    outcome: Optional[Outcome] = None

    @classmethod
    def new(cls, dice: DiceSet, sampler: Optional[UnbiasedSampler] = None) -> "MatchState":
        return cls(dice=dice, protocol=FairRandomProtocol(sampler))

    @property
    def sampler(self) -> UnbiasedSampler:
        return self.protocol.sampler

    def roll_order(self) -> list[Phase]:
        if self.first_mover is Side.HUMAN:
            return [Phase.ROLL_HUMAN, Phase.ROLL_AUTOMATED]
        return [Phase.ROLL_AUTOMATED, Phase.ROLL_HUMAN]

    def has_rolled(self, phase: Phase) -> bool:
        if phase is Phase.ROLL_HUMAN:
            return self.human_roll_value is not None
        return self.automated_roll_value is not None

    def next_phase(self) -> Phase:
        if self.phase is Phase.ARBITRATE_FIRST_MOVE:
            return Phase.ASSIGN_DICE
        if self.phase in (Phase.ASSIGN_DICE, Phase.ROLL_HUMAN, Phase.ROLL_AUTOMATED):
            for phase in self.roll_order():
                if not self.has_rolled(phase):
                    return phase
            return Phase.RESOLVE
        return Phase.FINISHED


@dataclass(frozen=True)
class MatchResult:
    outcome: Outcome
    state: MatchState
    reason: Optional[str] = None


class GameController:
    def __init__(self, dice: DiceSet, ui: GameUI, help_gen: type[HelpTableGenerator] = HelpTableGenerator):
        self.all_dice = dice
        self.ui = ui
        self.help_gen = help_gen
        self._handlers = {
            Phase.ARBITRATE_FIRST_MOVE: self.determine_first_player,
            Phase.ASSIGN_DICE: self.select_dice,
            Phase.ROLL_HUMAN: self.roll_human,
            Phase.ROLL_AUTOMATED: self.roll_automated,
            Phase.RESOLVE: self.determine_winner,
        }

    def new_match(self, sampler: Optional[UnbiasedSampler] = None) -> MatchState:
        return MatchState.new(self.all_dice, sampler)

    def play_match(self, state: Optional[MatchState] = None) -> MatchResult:
        if state is None:
            state = self.new_match()
        try:
            while state.phase is not Phase.FINISHED:
                result = self.run_phase(state)
                if isinstance(result, Cancelled):
                    state.outcome = Outcome.CANCELLED
                    return MatchResult(Outcome.CANCELLED, state)
                if isinstance(result, Failed):
                    state.outcome = Outcome.FAILED
                    return MatchResult(Outcome.FAILED, state, result.reason)
                state.phase = state.next_phase()
                logger.debug("Advanced to phase '%s'", state.phase.value)
            return MatchResult(state.outcome, state)
        finally:
            state.protocol.reset()
            self.ui.close()

    def run_phase(self, state: MatchState) -> StepResult:
        handler = self._handlers[state.phase]
        try:
            return handler(state)
        except EOFError:
            return Failed("input stream closed")
        except KeyboardInterrupt:
            return CANCELLED
        except Exception as exc:
            logger.exception("Match aborted during phase '%s'", state.phase.value)
            return Failed(str(exc) or type(exc).__name__)

    def determine_first_player(self, state: MatchState) -> StepResult:
        self.ui.display_message("\nLet's determine who makes the first move.")
        digest = state.protocol.commit(1)
        self.ui.display_message(f"I selected a random value in range 0..1 (HMAC={digest}).")

        guess = self._ask_choice(state, "Try to guess my selection:", {0: "0", 1: "1"})
        if isinstance(guess, Cancelled):
            return guess

        reveal = state.protocol.reveal(guess)
        state.protocol.reset()
        self._display_reveal(reveal, "My selection")

        # the guess matching the secret (sum even) hands the first move to the computer
        state.first_mover = Side.AUTOMATED if reveal.result == 0 else Side.HUMAN
        if state.first_mover is Side.AUTOMATED:
            self.ui.display_message("I make the first move and choose the dice.")
        else:
            self.ui.display_message("You make the first move and choose the dice.")
        return CONTINUE

    def select_dice(self, state: MatchState) -> StepResult:
        if state.first_mover is Side.AUTOMATED:
            self._computer_select_die(state)
            return self._player_select_die(state)

        result = self._player_select_die(state)
        if isinstance(result, Continue):
            self._computer_select_die(state)
        return result

    def roll_human(self, state: MatchState) -> StepResult:
        self.ui.display_message("\nIt's time for your roll.")
        index = self._fair_roll_index(state, state.human_die)
        if isinstance(index, Cancelled):
            return index
        state.human_roll_value = state.human_die.value_at(index)
        self.ui.display_message(f"Your roll result is {state.human_roll_value}.")
        return CONTINUE

    def roll_automated(self, state: MatchState) -> StepResult:
        self.ui.display_message("\nIt's time for my roll.")
        index = self._fair_roll_index(state, state.automated_die)
        if isinstance(index, Cancelled):
            return index
        state.automated_roll_value = state.automated_die.value_at(index)
        self.ui.display_message(f"My roll result is {state.automated_roll_value}.")
        return CONTINUE

    def determine_winner(self, state: MatchState) -> StepResult:
        player, computer = state.human_roll_value, state.automated_roll_value
        self.ui.display_message("\n--- Results ---")
        if player > computer:
            state.outcome = Outcome.HUMAN_WINS
            self.ui.display_message(f"You win ({player} > {computer})!")
        elif computer > player:
            state.outcome = Outcome.AUTOMATED_WINS
            self.ui.display_message(f"I win ({computer} > {player})!")
        else:
            state.outcome = Outcome.TIE
            self.ui.display_message(f"It's a tie ({player} = {computer})!")
        return CONTINUE

    def show_help(self):
        self.ui.display_message(self.help_gen.generate_table(self.all_dice))
        self.ui.display_message(self.help_gen.legend())

    def _computer_select_die(self, state: MatchState):
        available = state.dice.remaining(state.human_die)
        state.automated_die = state.sampler.choice(available)
        logger.debug("Computer picked die #%d out of %d", state.dice.index_of(state.automated_die), len(available))
        self.ui.display_message(f"I choose the [{state.automated_die}] dice.")

    def _player_select_die(self, state: MatchState) -> StepResult:
        taken = state.automated_die
        options = {i: str(d) for i, d in enumerate(state.dice) if d is not taken}
        claimed = {state.dice.index_of(taken)} if taken is not None else set()

        choice = self._ask_choice(state, "Choose your dice:", options, claimed)
        if isinstance(choice, Cancelled):
            return choice
        state.human_die = state.dice[choice]
        self.ui.display_message(f"You choose the [{state.human_die}] dice.")
        return CONTINUE

    def _fair_roll_index(self, state: MatchState, die: Die) -> Union[int, Cancelled]:
        faces = die.face_count()
        digest = state.protocol.commit(faces - 1)
        self.ui.display_message(f"I selected a random value in range 0..{faces - 1} (HMAC={digest}).")

        number = self._ask_choice(state, f"Add your number modulo {faces}.", {i: str(i) for i in range(faces)})
        if isinstance(number, Cancelled):
            return number

        reveal = state.protocol.reveal(number)
        state.protocol.reset()
        self._display_reveal(reveal, "My number")
        self.ui.display_message(
            f"The fair number generation result is "
            f"{reveal.secret_value} + {reveal.peer_value} = {reveal.result} (mod {reveal.modulus})."
        )
        return reveal.result

    def _display_reveal(self, reveal: Reveal, name: str):
        self.ui.display_message(f"{name}: {reveal.secret_value} (KEY={reveal.secret_key_hex}).")

    def _ask_choice(self, state: MatchState, title: str, options: dict[int, str],
                    claimed: Collection[int] = ()) -> Union[int, Cancelled]:
        prompt = self._format_menu(title, options)
        while True:
            line = self.ui.ask(prompt)
            try:
                reply = parse_reply(line, options, claimed)
            except InputValidationError as e:
                self.ui.display_message(f"Invalid input: {e} Please enter a listed number, X or ?.")
                continue
            if reply is Reply.EXIT:
                logger.debug("Exit requested during phase '%s'", state.phase.value)
                return CANCELLED
            if reply is Reply.HELP:
                self.show_help()
                continue
            return reply

    @staticmethod
    def _format_menu(title: str, options: dict[int, str]) -> str:
        lines = [title]
        lines.extend(f"{i} - {label}" for i, label in options.items())
        lines.append("X - exit")
        lines.append("? - help")
        return "\n".join(lines) + "\nYour selection: "

# ==============================================================================
# 10. Main Execution Block
# ==============================================================================

def resolve_log_level(env=None) -> int:
    env = os.environ if env is None else env
    level = logging.getLevelName(env.get(LOG_LEVEL_ENV, "WARNING").strip().upper())
    return level if isinstance(level, int) else logging.WARNING


def main(argv: Optional[list[str]] = None) -> int:
    logging.basicConfig(
        level=resolve_log_level(),
        stream=sys.stderr,
        format="%(levelname)s %(name)s: %(message)s",
    )

    # Dynamically determine the command used to invoke the script
    if 'py.exe' in sys.executable.lower():
        ConfigurationError.set_invocation_command('py')
    else:
        ConfigurationError.set_invocation_command('python')

    args = sys.argv[1:] if argv is None else argv
    try:
        dice = DiceParser.parse(args)
    except ConfigurationError as e:
        print(e, file=sys.stderr)
        return 1

    ui = GameUI()
    controller = GameController(dice, ui)
    ui.display_message("--- Welcome to the Non-Transitive Dice Game! ---")
    try:
        result = controller.play_match()
    except KeyboardInterrupt:
        print("\nGame interrupted. Goodbye!")
        return 0

    if result.outcome is Outcome.FAILED:
        print(f"Error: {result.reason}", file=sys.stderr)
        return 1
    if result.outcome is Outcome.CANCELLED:
        print("Exiting game. Goodbye!")
    return 0


if __name__ == "__main__":
    sys.exit(main())
