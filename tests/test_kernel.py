# tests/test_kernel.py
"""
Interpreter tests with dependency injection.
The interpreter owns session state and control flow; process execution is
delegated to an injected runner and scripts are read through a loader.
"""
from __future__ import annotations

import os
from pathlib import Path

import pytest

import batch_cli.kernel as kernel_mod
from batch_cli.commands import Jump, build_label_table, classify
from batch_cli.executor import RunResult
from batch_cli.kernel import InstructionPointer, Interpreter
from batch_cli.loader import FileTextLoader

# ----------------------------------------------------------------
# Mock dependencies
# ----------------------------------------------------------------


class FakeExecutor:
    """Mock ProcessRunner that records argv and replays canned output."""

    def __init__(self, stdout: str = "", stderr: str = "", error=None):
        self.stdout = stdout
        self.stderr = stderr
        self.error = error
        self.calls: list[tuple[list[str], str | None]] = []

    def _result(self) -> RunResult:
        return RunResult(
            exit_code=1 if self.error else 0,
            stdout="" if self.error else self.stdout,
            stderr="" if self.error else self.stderr,
            started_at="2025-12-14T10:00:00",
            duration_ms=5,
            error=self.error,
        )

    def run(self, argv, cwd=None) -> RunResult:
        self.calls.append((list(argv), cwd))
        return self._result()

    def run_stream(
        self, argv, on_stdout=None, on_stderr=None, timeout=None, cwd=None
    ) -> RunResult:
        self.calls.append((list(argv), cwd))
        if not self.error:
            if on_stdout and self.stdout:
                on_stdout(self.stdout)
            if on_stderr and self.stderr:
                on_stderr(self.stderr)
        return self._result()


class BufferedOnlyExecutor:
    """Runner without streaming support."""

    def __init__(self):
        self.calls = []

    def run(self, argv, cwd=None) -> RunResult:
        self.calls.append((list(argv), cwd))
        return RunResult(0, "buffered out\n", "buffered err\n", "t", 1)


class FakeConfig:
    def __init__(self, script: dict | None = None):
        self.system = {"prompt": "B>", "welcome": {"message": "Hello!\n"}}
        self.script = (
            script if script is not None
            else {"extension": "BATCH", "sigil": "$"}
        )
        self.execution = {}

    def get_path(self, path: str, default=None):
        return default


@pytest.fixture
def workdir(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    """A resolved scratch directory that is also the process cwd."""
    d = tmp_path.resolve()
    # monkeypatch restores the process cwd after CD tests call os.chdir
    monkeypatch.chdir(d)
    monkeypatch.setenv("BATCH_DATA_HOME", str(d / "data"))
    return d


@pytest.fixture
def executor() -> FakeExecutor:
    return FakeExecutor()


@pytest.fixture
def interp(workdir: Path, executor: FakeExecutor) -> Interpreter:
    i = Interpreter(
        executor=executor,
        loader=FileTextLoader(),
        config=FakeConfig(),
        cwd=str(workdir),
    )
    i.output = []  # type: ignore[attr-defined]
    i.errors = []  # type: ignore[attr-defined]
    i.output_fn = i.output.append  # type: ignore[attr-defined]
    i.error_fn = i.errors.append  # type: ignore[attr-defined]
    return i


def out_lines(interp: Interpreter) -> list[str]:
    return "".join(interp.output).splitlines()  # type: ignore[attr-defined]


def write_script(directory: Path, name: str, lines: list[str]) -> Path:
    path = directory / name
    path.write_text("\n".join(lines) + "\n", encoding="utf-8")
    return path


# ----------------------------------------------------------------
# Construction
# ----------------------------------------------------------------


def test_interpreter_reads_script_settings_from_config(workdir: Path):
    i = Interpreter(
        executor=FakeExecutor(),
        loader=FileTextLoader(),
        config=FakeConfig(script={"extension": ".bat", "sigil": "%"}),
        cwd=str(workdir),
    )
    assert i.script_extension == "bat"
    assert i.sigil == "%"
    assert i.prompt_text == "B>"


def test_interpreter_defaults_when_config_section_empty(workdir: Path):
    i = Interpreter(
        executor=FakeExecutor(),
        loader=FileTextLoader(),
        config=FakeConfig(script={}),
        cwd=str(workdir),
    )
    assert i.script_extension == "BATCH"
    assert i.sigil == "$"


def test_start_returns_welcome_message(interp: Interpreter):
    assert interp.start() == "Hello!"


def test_prompt_contains_configured_text(interp: Interpreter):
    assert "B>" in interp.prompt()


# ----------------------------------------------------------------
# ECHO / SET
# ----------------------------------------------------------------


def test_set_then_echo_prints_value(interp: Interpreter):
    interp.run_lines(["SET x hello", "ECHO $x"])
    assert out_lines(interp) == ["hello"]


def test_echo_unbound_variable_prints_empty(interp: Interpreter):
    interp.run_lines(["ECHO $undefined"])
    assert interp.output == ["\n"]  # type: ignore[attr-defined]


def test_echo_unbound_variable_leaves_gap(interp: Interpreter):
    interp.run_lines(["ECHO a $nope b"])
    assert out_lines(interp) == ["a  b"]


def test_echo_mixes_literals_and_variables(interp: Interpreter):
    interp.run_lines(["SET who world", "echo hello $who !"])
    assert out_lines(interp) == ["hello world !"]


def test_echo_collapses_whitespace(interp: Interpreter):
    interp.run_lines(["ECHO   spaced     out"])
    assert out_lines(interp) == ["spaced out"]


def test_echo_substitution_is_single_pass(interp: Interpreter):
    interp.run_lines(["SET a $b", "SET b boom", "ECHO $a"])
    assert out_lines(interp) == ["$b"]


def test_echo_only_replaces_whole_tokens(interp: Interpreter):
    interp.run_lines(["SET x 1", "ECHO pre$x"])
    assert out_lines(interp) == ["pre$x"]


def test_variable_names_are_case_sensitive(interp: Interpreter):
    interp.run_lines(["SET Name upper", "ECHO $name $Name"])
    assert out_lines(interp) == [" upper"]


def test_set_overwrites_binding(interp: Interpreter):
    interp.run_lines(["SET x 1", "SET x 2"])
    assert interp.variables == {"x": "2"}


def test_substitute_uses_configured_sigil(workdir: Path):
    i = Interpreter(
        executor=FakeExecutor(),
        loader=FileTextLoader(),
        config=FakeConfig(script={"sigil": "%"}),
        cwd=str(workdir),
    )
    i.variables["x"] = "v"
    assert i.substitute("%x $x") == "v $x"


# ----------------------------------------------------------------
# IF
# ----------------------------------------------------------------


def test_if_true_executes_next_line(interp: Interpreter):
    interp.run_lines(["SET a 1", "IF a == 1", "ECHO yes", "ECHO after"])
    assert out_lines(interp) == ["yes", "after"]


def test_if_false_skips_exactly_one_line(interp: Interpreter):
    interp.run_lines(["SET a 1", "IF a == 2", "ECHO yes", "ECHO after"])
    assert out_lines(interp) == ["after"]


def test_if_unbound_variable_has_no_effect(interp: Interpreter):
    interp.run_lines(["IF missing == b", "ECHO runs", "ECHO also"])
    assert out_lines(interp) == ["runs", "also"]


def test_if_compares_lexicographically(interp: Interpreter):
    # "10" < "9" as strings
    interp.run_lines(["SET n 10", "IF n < 9", "ECHO less"])
    assert out_lines(interp) == ["less"]


def test_if_unknown_operator_is_false(interp: Interpreter):
    interp.run_lines(["SET n 1", "IF n =~ 1", "ECHO no", "ECHO end"])
    assert out_lines(interp) == ["end"]


def test_if_value_keeps_remaining_tokens(interp: Interpreter):
    interp.run_lines(["SET a b", "IF a != b c", "ECHO differs"])
    assert out_lines(interp) == ["differs"]


def test_if_false_on_last_line_ends_run(interp: Interpreter):
    interp.run_lines(["ECHO start", "SET a 1", "IF a == 2"])
    assert out_lines(interp) == ["start"]


# ----------------------------------------------------------------
# FOR
# ----------------------------------------------------------------


def test_for_runs_following_line_once_per_value(interp: Interpreter):
    interp.run_lines(["FOR v X Y Z", "ECHO $v"])
    assert out_lines(interp) == ["X", "Y", "Z"]


def test_for_continues_after_body(interp: Interpreter):
    interp.run_lines(["FOR v a b", "ECHO $v", "ECHO done"])
    assert out_lines(interp) == ["a", "b", "done"]


def test_for_leaves_last_value_bound(interp: Interpreter):
    interp.run_lines(["FOR v a b c", "ECHO $v"])
    assert interp.variables["v"] == "c"


def test_nested_for_loops(interp: Interpreter):
    interp.run_lines(["FOR a 1 2", "FOR b x y", "ECHO $a $b"])
    assert out_lines(interp) == ["1 x", "1 y", "2 x", "2 y"]


def test_nested_for_loops_three_deep(interp: Interpreter):
    interp.run_lines(["FOR a 1 2", "FOR b x y", "FOR c p", "ECHO $a $b $c"])
    assert out_lines(interp) == ["1 x p", "1 y p", "2 x p", "2 y p"]


def test_jump_inside_nested_loop_is_seen_by_outer_loop(interp: Interpreter):
    lines = [
        "FOR a 1 2",
        "FOR b x",
        "GOTO end",
        "ECHO skipped",
        ":end",
        "ECHO $a",
    ]
    interp.run_lines(lines)

    # The outer pass for 2 carries on after :end instead of re-entering
    assert out_lines(interp) == ["2"]


def test_for_body_can_be_conditional(interp: Interpreter):
    # The IF line is the body; its false last iteration skips the ECHO
    interp.run_lines(["FOR v a b", "IF v == a", "ECHO last"])
    assert out_lines(interp) == []
    assert interp.variables["v"] == "b"


def test_for_on_last_line_binds_without_body(interp: Interpreter):
    interp.run_lines(["ECHO first", "FOR v a b"])
    assert out_lines(interp) == ["first"]
    assert interp.variables["v"] == "b"


def test_for_body_shares_instruction_pointer(interp: Interpreter):
    lines = ["FOR v a b", "GOTO end", "ECHO skipped", ":end", "ECHO $v"]
    interp.run_lines(lines)
    assert out_lines(interp) == ["b"]


def test_for_continues_from_where_body_jumped(interp: Interpreter):
    # First pass jumps to :end; the next value runs the line after it
    lines = ["FOR v a b c", "GOTO end", "ECHO skipped", ":end", "ECHO $v"]
    interp.run_lines(lines)

    assert out_lines(interp) == ["b"]
    assert interp.variables["v"] == "c"


def test_for_resumes_after_skipped_line(interp: Interpreter):
    lines = ["FOR v a b c", "IF v == a", "ECHO $v", "ECHO after"]
    interp.run_lines(lines)

    # a: IF holds; b: IF skips the ECHO; c: runs the line after the skip
    assert out_lines(interp) == ["after"]


# ----------------------------------------------------------------
# WHILE
# ----------------------------------------------------------------


def test_while_runs_until_body_changes_variable(interp: Interpreter):
    interp.run_lines(
        ["SET x go", "WHILE x == go", "SET x stop", "ECHO $x"]
    )
    assert out_lines(interp) == ["stop"]


def test_while_with_nested_for_body(interp: Interpreter):
    interp.run_lines(
        ["SET n go", "WHILE n == go", "FOR n a stop", "ECHO $n"]
    )
    assert out_lines(interp) == ["a", "stop"]


def test_while_unbound_variable_skips_loop(interp: Interpreter):
    interp.run_lines(["WHILE nope == x", "ECHO next"])
    # Body never ran, the following line runs in normal flow
    assert out_lines(interp) == ["next"]


def test_while_false_predicate_skips_loop(interp: Interpreter):
    interp.run_lines(["SET x a", "WHILE x != a", "ECHO next"])
    assert out_lines(interp) == ["next"]


def test_while_supports_ordering_operators(interp: Interpreter):
    interp.run_lines(["SET x a", "WHILE x < b", "SET x b", "ECHO $x"])
    assert out_lines(interp) == ["b"]


def test_while_on_last_line_terminates(interp: Interpreter):
    interp.run_lines(["SET x a", "WHILE x == a"])
    assert out_lines(interp) == []


def test_while_body_goto_reaches_terminating_line(interp: Interpreter):
    lines = [
        "SET x a",
        "WHILE x == a",
        "GOTO work",
        "ECHO never",
        ":work",
        "SET x b",
        "ECHO $x",
    ]
    interp.run_lines(lines)

    assert out_lines(interp) == ["b"]
    assert interp.variables["x"] == "b"


def test_while_ends_when_body_walks_off_the_end(interp: Interpreter):
    lines = ["SET x a", "WHILE x == a", "GOTO last", "ECHO never", ":last"]
    interp.run_lines(lines)

    assert out_lines(interp) == []
    assert interp.variables["x"] == "a"


# ----------------------------------------------------------------
# GOTO / labels
# ----------------------------------------------------------------


def test_goto_skips_forward(interp: Interpreter):
    interp.run_lines(["GOTO end", "ECHO skipped", ": end", "ECHO reached"])
    assert out_lines(interp) == ["reached"]


def test_goto_loop_until_exit(interp: Interpreter):
    lines = [
        "SET x a",
        ":top",
        "ECHO $x",
        "IF x == b",
        "EXIT",
        "SET x b",
        "GOTO top",
    ]
    with pytest.raises(SystemExit) as excinfo:
        interp.run_lines(lines)

    assert excinfo.value.code == 0
    assert out_lines(interp) == ["a", "b", "Exiting shell."]


def test_goto_unknown_label_reports_and_continues(interp: Interpreter):
    interp.run_lines(["GOTO nowhere", "ECHO still here"])
    assert out_lines(interp) == ["Label 'nowhere' not found", "still here"]


def test_labels_are_case_sensitive(interp: Interpreter):
    interp.run_lines([":Top", "GOTO top"])
    assert out_lines(interp) == ["Label 'top' not found"]


def test_jump_lands_on_every_label_declaration(interp: Interpreter):
    lines = ["ECHO a", ":one", "ECHO b", ": two", "ECHO c", ":three"]
    table = build_label_table(lines)
    interp.labels = table

    for label, index in table.items():
        ip = InstructionPointer(0)
        interp.execute(Jump(label), lines, ip)
        assert ip.value == index


def test_unknown_jump_leaves_pointer_unchanged(interp: Interpreter):
    ip = InstructionPointer(3)
    interp.labels = {}
    interp.execute(Jump("missing"), ["a", "b", "c", "d"], ip)
    assert ip.value == 3
    assert ip.moves == 0


def test_pointer_counts_jumps_and_skips(interp: Interpreter):
    lines = ["SET x a", "IF x == b", ":here"]
    interp.run_lines(["SET x a"])
    interp.labels = build_label_table(lines)
    ip = InstructionPointer(1)

    interp.execute(classify("IF x == b"), lines, ip)
    assert (ip.value, ip.moves) == (2, 1)

    interp.execute(Jump("here"), lines, ip)
    assert (ip.value, ip.moves) == (2, 2)

    interp.execute(classify("IF x == a"), lines, ip)
    assert ip.moves == 2


def test_label_table_is_restored_after_run(interp: Interpreter):
    interp.labels = {"outer": 7}
    interp.run_lines([":inner", "ECHO x"])
    assert interp.labels == {"outer": 7}


# ----------------------------------------------------------------
# SHIFT / EXIT / malformed
# ----------------------------------------------------------------


def test_shift_is_a_no_op(interp: Interpreter):
    interp.run_lines(["SET x 1", "SHIFT", "ECHO $x"])
    assert out_lines(interp) == ["1"]
    assert interp.variables == {"x": "1"}


def test_exit_stops_execution_immediately(interp: Interpreter):
    with pytest.raises(SystemExit):
        interp.run_lines(["ECHO one", "EXIT", "ECHO two"])
    assert out_lines(interp) == ["one", "Exiting shell."]


def test_exit_inside_loop_body_unwinds_everything(interp: Interpreter):
    with pytest.raises(SystemExit):
        interp.run_lines(["FOR v a b c", "EXIT", "ECHO never"])
    assert out_lines(interp) == ["Exiting shell."]
    assert interp.variables["v"] == "a"


def test_malformed_command_reports_invalid(interp: Interpreter):
    interp.run_lines(["SET onlyname", "ECHO ok"])
    assert out_lines(interp) == ["Invalid command", "ok"]


def test_blank_script_line_reports_invalid(interp: Interpreter):
    interp.run_lines(["ECHO a", "", "ECHO b"])
    assert out_lines(interp) == ["a", "Invalid command", "b"]


# ----------------------------------------------------------------
# CD
# ----------------------------------------------------------------


def test_cd_nonexistent_leaves_state_unchanged(
    interp: Interpreter, workdir: Path
):
    interp.run_lines(["CD nonexistent_dir"])

    assert interp.cwd == str(workdir)
    assert Path.cwd().resolve() == workdir
    assert out_lines(interp) == ["Directory not found: nonexistent_dir"]


def test_cd_parent_moves_to_canonical_parent(
    interp: Interpreter, workdir: Path
):
    child = workdir / "child"
    child.mkdir()
    interp.cwd = str(child)

    interp.run_lines(["CD .."])

    assert interp.cwd == str(workdir)
    assert Path.cwd().resolve() == workdir
    assert out_lines(interp) == [f"Changed directory to: {workdir}"]


def test_cd_relative_to_session_cwd(interp: Interpreter, workdir: Path):
    (workdir / "a" / "b").mkdir(parents=True)
    interp.run_lines(["CD a", "CD b"])
    assert interp.cwd == str(workdir / "a" / "b")
    assert Path(os.getcwd()).resolve() == workdir / "a" / "b"


def test_cd_to_file_is_not_found(interp: Interpreter, workdir: Path):
    (workdir / "plain.txt").write_text("x", encoding="utf-8")
    interp.run_lines(["CD plain.txt"])
    assert interp.cwd == str(workdir)
    assert out_lines(interp) == ["Directory not found: plain.txt"]


# ----------------------------------------------------------------
# External dispatch: processes
# ----------------------------------------------------------------


def test_external_command_delegates_to_runner(
    interp: Interpreter, executor: FakeExecutor, workdir: Path
):
    executor.stdout = "listing\n"
    interp.run_lines(["ls -la $x"])

    assert executor.calls == [(["ls", "-la", "$x"], str(workdir))]
    assert out_lines(interp) == ["listing"]


def test_external_command_stderr_goes_to_error_stream(
    interp: Interpreter, executor: FakeExecutor
):
    executor.stderr = "warning\n"
    interp.run_lines(["tool"])
    assert interp.errors == ["warning\n"]  # type: ignore[attr-defined]
    assert out_lines(interp) == []


def test_external_launch_failure_is_reported(
    interp: Interpreter, executor: FakeExecutor
):
    executor.error = "No such file or directory: 'nope'"
    interp.run_lines(["nope arg", "ECHO continues"])

    assert out_lines(interp) == [
        "Command not found or failed to execute: "
        "No such file or directory: 'nope'",
        "continues",
    ]


def test_external_path_program_resolved_against_cwd(
    interp: Interpreter, executor: FakeExecutor, workdir: Path
):
    interp.run_lines(["./bin/tool x"])
    argv, cwd = executor.calls[0]
    assert argv == [str(workdir / "bin" / "tool"), "x"]
    assert cwd == str(workdir)


def test_external_uses_buffered_run_without_streaming(workdir: Path):
    executor = BufferedOnlyExecutor()
    out: list[str] = []
    err: list[str] = []
    i = Interpreter(
        executor=executor,
        loader=FileTextLoader(),
        config=FakeConfig(),
        cwd=str(workdir),
        output_fn=out.append,
        error_fn=err.append,
    )
    i.run_lines(["prog"])

    assert executor.calls == [(["prog"], str(workdir))]
    assert out == ["buffered out\n"]
    assert err == ["buffered err\n"]


# ----------------------------------------------------------------
# External dispatch: nested scripts
# ----------------------------------------------------------------


def test_nested_script_runs_and_shares_variables(
    interp: Interpreter, executor: FakeExecutor, workdir: Path
):
    write_script(workdir, "sub.BATCH", ["ECHO in sub $x", "SET y fromsub"])
    interp.run_lines(["SET x 1", "sub", "ECHO $y"])

    assert out_lines(interp) == ["in sub 1", "fromsub"]
    assert executor.calls == []


def test_nested_script_extension_replaces_existing_one(
    interp: Interpreter, workdir: Path
):
    write_script(workdir, "job.BATCH", ["ECHO job"])
    interp.run_lines(["job.txt"])
    assert out_lines(interp) == ["job"]


def test_nested_script_labels_are_scoped(
    interp: Interpreter, workdir: Path
):
    write_script(workdir, "sub.BATCH", [":inner", "SET shared yes"])
    lines = ["sub", "GOTO inner", "GOTO end", "ECHO skipped", ":end",
             "ECHO $shared"]
    interp.run_lines(lines)

    assert out_lines(interp) == ["Label 'inner' not found", "yes"]


def test_nested_script_sees_directory_change(
    interp: Interpreter, workdir: Path
):
    sub = workdir / "scripts"
    sub.mkdir()
    write_script(sub, "hello.BATCH", ["ECHO hello from scripts"])

    interp.run_lines(["CD scripts", "hello"])

    assert out_lines(interp)[-1] == "hello from scripts"


def test_exit_in_nested_script_ends_caller(
    interp: Interpreter, workdir: Path
):
    write_script(workdir, "quit.BATCH", ["EXIT"])
    with pytest.raises(SystemExit):
        interp.run_lines(["quit", "ECHO unreachable"])
    assert out_lines(interp) == ["Exiting shell."]


def test_run_script_missing_file_is_reported(interp: Interpreter):
    interp.run_script("missing.BATCH")
    assert out_lines(interp) == ["Script not found: missing.BATCH"]


def test_run_script_relative_to_session_cwd(
    interp: Interpreter, workdir: Path
):
    write_script(workdir, "main.BATCH", ["FOR v X Y Z", "ECHO $v"])
    interp.run_script("main.BATCH")
    assert out_lines(interp) == ["X", "Y", "Z"]


# ----------------------------------------------------------------
# Interactive lines + error boundary
# ----------------------------------------------------------------


def test_handle_line_strips_and_runs(interp: Interpreter):
    interp.handle_line("  SET greeting hi  ")
    interp.handle_line("ECHO $greeting")

    assert interp.variables == {"greeting": "hi"}
    assert out_lines(interp) == ["hi"]


def test_handle_line_for_has_no_body_interactively(interp: Interpreter):
    interp.handle_line("FOR v a b")
    assert out_lines(interp) == []
    assert interp.variables["v"] == "b"


def test_variables_persist_between_lines(interp: Interpreter):
    interp.handle_line("SET x kept")
    interp.run_lines(["ECHO $x"])
    assert out_lines(interp) == ["kept"]


def test_handler_exception_is_contained_and_logged(
    interp: Interpreter, workdir: Path
):
    class ExplodingExecutor(FakeExecutor):
        def run_stream(self, argv, **kwargs):
            raise RuntimeError("boom")

    interp.executor = ExplodingExecutor()
    interp.run_lines(["tool", "ECHO after"])

    assert out_lines(interp) == [
        "[ERROR] Unhandled exception: RuntimeError: boom",
        "after",
    ]
    crash_log = workdir / "data" / "batch" / "logs" / "crash.log"
    text = crash_log.read_text(encoding="utf-8")
    assert "error=RuntimeError: boom" in text
    assert f"cwd={workdir}" in text
    assert "----" in text


def test_crash_log_failures_are_silent(monkeypatch: pytest.MonkeyPatch):
    def broken_root():
        raise OSError("read-only")

    monkeypatch.setattr(kernel_mod.cfg_module, "get_data_root", broken_root)
    kernel_mod.write_crash_log(ValueError("x"), command="ECHO")


def test_execute_classified_command_directly(interp: Interpreter):
    ip = InstructionPointer()
    interp.execute(classify("SET k v"), ["SET k v"], ip)
    assert interp.variables == {"k": "v"}
    assert ip.value == 0
