"""Compile job orchestration: queue controller, worker protocol, diagnostics.

The external compile toolchain is slow, occasionally hangs and must never run
more than once at a time per server.  Everything here is built around that
constraint:

- :class:`~cuboid_compile.compile.queue.CompileQueueController` owns a bounded
  FIFO of pending job ids and a single active slot, and is the only writer of
  job records and events.
- :mod:`~cuboid_compile.compile.backend` spawns one worker process per run and
  speaks a one-request/one-response JSON protocol over stdin/stdout.
- :mod:`~cuboid_compile.compile.diagnostics` turns compiler logs into
  structured diagnostics for clients polling job state.
"""
