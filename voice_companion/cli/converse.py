import argparse
import asyncio
import logging
import signal
from dataclasses import replace

import colorama

from voice_companion.audio.level import LevelMonitor
from voice_companion.audio.playback import ProgressiveAudioPlayer
from voice_companion.client.pipeline import PipelineClient
from voice_companion.config import ClientConfig, LevelConfig, PlayerConfig, TurnConfig
from voice_companion.core.session import SessionController
from voice_companion.core.state import ACTIVITY, ERROR, MESSAGES, ConversationState
from voice_companion.errors import VoiceCompanionError
from voice_companion.models import AssessmentReport, Role

colorama.init(autoreset=True)

_ACTIVITY_COLOURS = {
    "idle": colorama.Fore.WHITE,
    "listening": colorama.Fore.GREEN,
    "thinking": colorama.Fore.YELLOW,
    "speaking": colorama.Fore.CYAN,
}


class TerminalView:
    """Prints activity changes, new messages and errors as they happen."""

    def __init__(self, state: ConversationState) -> None:
        self._printed = 0
        state.subscribe(self.on_event)

    def on_event(self, event: str, state: ConversationState) -> None:
        if event == ACTIVITY:
            colour = _ACTIVITY_COLOURS.get(state.activity.value, "")
            print(f"{colour}[{state.activity.value}]")
        elif event == MESSAGES:
            messages = state.messages
            if len(messages) < self._printed:
                self._printed = 0
            for m in messages[self._printed:]:
                if m.role is Role.USER:
                    print(f"{colorama.Style.BRIGHT}You: {m.content}")
                else:
                    print(f"{colorama.Fore.MAGENTA}{state.assistant_name}: {m.content}")
            self._printed = len(messages)
        elif event == ERROR and state.error:
            print(f"{colorama.Fore.RED}[error] {state.error}")


def on_interrupt(ctl: SessionController, stop: asyncio.Event) -> None:
    """Ctrl+C while a reply is playing cuts it short; otherwise it ends the session."""
    if ctl.player.is_playing:
        ctl.stop_speaking()
    else:
        stop.set()


def print_report(report: AssessmentReport) -> None:
    print(f"\n{colorama.Style.BRIGHT}Assessment ({report.overallSeverity})")
    print(report.summary)
    for name in ("memory", "language", "attention", "orientation", "executiveFunction"):
        domain = getattr(report, name)
        print(f"  {name:<18} {domain.score:>2}/10")
        for concern in domain.concerns:
            print(f"{colorama.Fore.YELLOW}    - {concern}")
    if report.recommendations:
        print("Recommendations:")
        for rec in report.recommendations:
            print(f"  * {rec}")


async def run(args: argparse.Namespace) -> None:
    turn_config = replace(
        TurnConfig.from_env(),
        **{k: v for k, v in (("threshold", args.threshold), ("silence_ms", args.silence_ms)) if v is not None},
    )
    client_config = replace(ClientConfig.from_env(), **({"base_url": args.url} if args.url else {}))
    player_config = PlayerConfig(args.playback) if args.playback else PlayerConfig.from_env()

    state = ConversationState()
    TerminalView(state)
    level_monitor = LevelMonitor(LevelConfig.from_env())
    if args.meter:
        level_monitor.subscribe(lambda level: print(f"\r{'#' * int(level / 5):<20}", end="", flush=True))

    async with PipelineClient(client_config) as client:
        player = ProgressiveAudioPlayer(config=player_config)
        ctl = SessionController(
            state, client, player, turn_config=turn_config, level_monitor=level_monitor
        )
        stop = asyncio.Event()
        try:
            asyncio.get_running_loop().add_signal_handler(signal.SIGINT, on_interrupt, ctl, stop)
        except NotImplementedError:
            pass  # Windows: Ctrl+C surfaces as KeyboardInterrupt in main()
        await ctl.start_session()
        if not state.is_session_active:
            return
        print(
            "[converse] Speak and pause to take a turn. "
            "Ctrl+C interrupts a reply; press it again to end the session."
        )
        try:
            await stop.wait()
        finally:
            ctl.end_session()

        if args.report and state.messages:
            try:
                print_report(await ctl.analyze())
            except VoiceCompanionError as exc:
                print(f"{colorama.Fore.RED}[error] Report failed: {exc}")


def main(argv=None) -> None:
    parser = argparse.ArgumentParser(description="Talk with the voice companion")
    parser.add_argument("--url", help="Backend base URL")
    parser.add_argument("--threshold", type=float, help="Speech loudness threshold (0-100)")
    parser.add_argument("--silence-ms", type=int, help="Silence that ends a turn")
    parser.add_argument("--playback", choices=["auto", "mpv", "ffplay", "buffer"])
    parser.add_argument("--meter", action="store_true", help="Show a live loudness meter")
    parser.add_argument("--report", action="store_true", help="Print the assessment when done")
    parser.add_argument("-v", "--verbose", action="store_true")
    args = parser.parse_args(argv)

    logging.basicConfig(level=logging.DEBUG if args.verbose else logging.INFO)
    try:
        asyncio.run(run(args))
    except KeyboardInterrupt:
        print("[converse] Stopped by user")


if __name__ == "__main__":
    main()
