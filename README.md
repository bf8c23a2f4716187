# xraystrategy

This package holds the strategies a distributed-tracing client uses for three jobs:

- deciding which requests get traced;
- turning errors into exception records for trace segments;
- choosing what happens when a trace context is missing.

It uses only the standard library.

## Installation

```
pip install xraystrategy
```

## Sampling

Every strategy implements `SamplingStrategy.should_trace(request)` from
`xraystrategy.decision`. The method takes a `SamplingRequest` with the fields
`host`, `method`, `url`, `service_name` and `service_type`. It returns a
`Decision` with `sample` (a bool) and `rule`, which holds the name of the
centralized rule that decided, or `None`. An empty request field matches any
rule. Rule patterns match without regard to case, and `*` and `?` act as
wildcards.

### Local rules

`LocalizedStrategy` (in `xraystrategy.localized`) decides from a rule set that
it holds itself. `LocalizedStrategy.default()` samples the first request each
second and 5% of requests after that:

```python
from xraystrategy.decision import SamplingRequest
from xraystrategy.localized import LocalizedStrategy

strategy = LocalizedStrategy.default()
decision = strategy.should_trace(
    SamplingRequest(host="www.example.com", method="GET", url="/checkout")
)
print(decision.sample)
```

You can load rules in two ways:

- `LocalizedStrategy.from_json(data)` reads JSON text or bytes.
- `LocalizedStrategy.from_file(path)` reads a JSON file.

The document has a `version` (1 or 2), a `default` rule and a list of `rules`:

```json
{
  "version": 2,
  "default": {"fixed_target": 1, "rate": 0.05},
  "rules": [
    {"host": "*", "http_method": "*", "url_path": "/checkout",
     "fixed_target": 10, "rate": 0.05}
  ]
}
```

The two versions differ in how a rule names its target:

- A version 1 rule gives `service_name` and no `host`. When the file is loaded, `service_name` is moved into `host`.
- A version 2 rule gives `host` and no `service_name`.

The default rule must not set `url_path`, `service_name` or `http_method`. The
`fixed_target` and `rate` values must not be negative.

`manifest_from_json` and `manifest_from_file` in `xraystrategy.manifest` return
the parsed `RuleManifest`. If a document is not valid, either one raises
`ManifestError`, which is a subclass of `ValueError`.

Each rule first takes from a reservoir of `fixed_target` requests per second.
Once that is used up, it samples at `rate`.

### Centralized rules

`CentralizedStrategy` (in `xraystrategy.centralized`) takes its rules and
reservoir quotas from a sampling service. It falls back to a
`LocalizedStrategy` when the central rules are more than an hour old or have no
default rule.

```python
from xraystrategy.centralized import CentralizedStrategy
from xraystrategy.service import SamplingProxy

strategy = CentralizedStrategy.default(SamplingProxy("127.0.0.1:2000"))
decision = strategy.should_trace(request)   # starts the pollers on first use
strategy.stop()
```

The fallback comes from the constructor you use:

- `CentralizedStrategy.default(proxy)` falls back to the default local rules.
- `CentralizedStrategy.from_json(data, proxy)` falls back to local rules given as JSON text.
- `CentralizedStrategy.from_file(path, proxy)` falls back to local rules read from a file.

The first call to `should_trace` (or to `start()`) starts background threads:

- one thread fetches the rules once, straight away;
- one thread polls the rules about every 300 seconds;
- one thread polls the quota targets about every 10 seconds.

If no proxy was given, it creates a `SamplingProxy` for `127.0.0.1:2000`.

To poll by hand, call these methods:

- `refresh_manifest()` fetches the rules. Rules it cannot read are skipped, and it then raises `RuntimeError`.
- `refresh_targets()` reports statistics and applies the quotas it receives. It raises `RuntimeError` if any target could not be applied.
- `snapshots()` returns the statistics it would report.
- `update_target(target)` applies a single target.

`SamplingProxy` (in `xraystrategy.service`) sends unsigned JSON requests over
HTTP to a daemon address:

- `POST /GetSamplingRules` to fetch the rules;
- `POST /SamplingTargets` to report statistics and fetch the targets.

Any object with `get_sampling_rules()` and `get_sampling_targets(statistics)`
can stand in for it. Those methods return the dataclasses in
`xraystrategy.service`.

## Errors and exceptions

`DefaultFormattingStrategy(frame_count=32)` is in `xraystrategy.exception`.
`frame_count` must be between 0 and 32; any other value raises `ValueError`.

```python
from xraystrategy.exception import DefaultFormattingStrategy, MultiError

fmt = DefaultFormattingStrategy()
err = fmt.error("lookup failed")          # XRayError, type "error"
err = fmt.errorf("user %s missing", 42)
try:
    raise KeyError("id")
except KeyError:
    p = fmt.panicf("%s", "boom")          # type "panic", stack from the raise site

record = fmt.exception_from_error(ValueError("bad input"))
print(record.to_dict())    # id, type "ValueError", message, stack
print(MultiError([ValueError("one"), ValueError("two")]))
```

`exception_from_error` sets the fields of the record as follows:

- `type` is the name of the exception's class, or the kind of an `XRayError` found in the `__cause__` chain.
- `remote` is `True` when an exception in the chain has a non-empty `request_id`.
- The stack comes from a `stack_trace()` method in the chain if there is one. Otherwise it comes from the exception's traceback, and failing that from the current stack.

## Missing context

`xraystrategy.context_missing` holds three strategies, each with
`context_missing(value)`:

- `RuntimeErrorStrategy` raises `ContextMissingError`.
- `LogErrorStrategy` logs an error on the `xraystrategy.context_missing` logger.
- `IgnoreErrorStrategy` does nothing.

The constants `RUNTIME_ERROR`, `LOG_ERROR` and `IGNORE_ERROR` name the three strategies.

## Time, randomness and timers

A strategy or rule can take its own time source and random source:

- Time: `DefaultClock` or `ManualClock(now_time, now_nanos)` from `xraystrategy.clock`. `ManualClock` moves only when you call `increment`.
- Randomness: `DefaultRand` or `FixedRand(f64, int_value)` from `xraystrategy.rand`.

With a `ManualClock` and a `FixedRand`, tests can assert exact decisions.

`JitterTimer(period, jitter)` in `xraystrategy.timer` yields intervals shortened
by a random jitter. The pollers use it.

## What this package does not do

The package does not do any of the following:

- create, record or send trace segments;
- read daemon addresses or strategy choices from environment variables;
- provide a command-line program.

The daemon address goes to `SamplingProxy` as an argument.