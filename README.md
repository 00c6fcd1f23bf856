# gops

`gops` finds the running processes whose executables carry an embedded
toolchain build-info record, and talks to a small diagnostics agent that a
Python program can start, to retrieve stack traces, memory statistics,
samples and more.

## Installation

```
pip install .
```

## Listing processes

Run `gops` with no arguments to list the matching processes it can find:

```
gops
```

Each line shows the PID, the parent PID, the executable name, the toolchain
version read from the binary's build-info record, and the binary's path.
Development versions are shortened to `devel +<hash>`. A `*` after the name
marks processes that have published an agent port file.

Show the processes as a parent/child tree:

```
gops tree
```

## Inspecting a process

```
gops process <pid> [period]
gops <pid> [period]
```

`pid` and `proc` are aliases of `process`. The command prints the parent PID,
thread count, memory usage, CPU usage over the process lifetime, user name,
command line, elapsed time (`[[DD-]hh:]mm:ss`) and open connections. When a
period such as `5s`, `1m30s` or a plain number of seconds is given, the CPU
usage over that interval is measured as well.

## Talking to an agent

These commands take either the PID of a local process whose agent wrote a
port file, or a `host:port` address:

```
gops stack <pid|addr>      # stack trace of every thread
gops gc <pid|addr>         # run a garbage collection
gops setgc <pid|addr> 50   # set the first-generation GC threshold ("off" disables GC)
gops memstats <pid|addr>   # memory and garbage collector statistics
gops stats <pid|addr>      # thread counts, switch interval, CPU count
gops version <pid|addr>    # interpreter implementation and version
gops trace <pid|addr>      # 5 seconds of sampled stacks
gops pprof-heap <pid|addr> # tracemalloc statistics per line
gops pprof-cpu <pid|addr>  # 30 seconds of sampled stacks, folded and counted
```

`trace`, `pprof-heap` and `pprof-cpu` save what the agent returns to a
temporary file and print its path. When a `go` executable is on the `PATH`,
they then run `go tool trace` or `go tool pprof` on that file.

`gops help [command]` shows help, and `gops completion <shell>` prints a
completion script for `bash`, `zsh`, `fish` or `powershell`.

## Running the agent

```python
from gops.agent import Options, listen, close

listen(Options(shutdown_cleanup=True))
try:
    ...
finally:
    close()
```

`Options` takes `addr` (default `127.0.0.1:0`, a free port), `config_dir`,
`shutdown_cleanup` (close the agent and exit on SIGINT, SIGTERM or SIGQUIT)
and `reuse_socket_addr_and_port`. The agent writes its port to a file named
after the process ID in the configuration directory: `$GOPS_CONFIG_DIR` when
set, otherwise `gops` under the user's configuration directory.
`gops.agent.portfile()` returns that file's path. The agent accepts
connections from any program on the host, so review your security needs
before starting it.

## Limitations

- The heap request needs tracemalloc to be tracing in the target, for example
  by starting it with `PYTHONTRACEMALLOC=1`.
- Profiles and traces are plain text (per-line allocation statistics, folded
  stack samples, timestamped stack samples), not the binary formats that
  `go tool pprof` and `go tool trace` read, so those tools will not open them.
- The binary sent for `pprof-*` is the interpreter executable.

## Development

```
pip install -e ".[test]"
pytest
```