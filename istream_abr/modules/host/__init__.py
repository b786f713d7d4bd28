from istream_abr.modules.host.trace_host import NetworkPeriod, TraceContext, TraceSimulator, load_trace

__all__ = ["NetworkPeriod", "TraceContext", "TraceSimulator", "load_trace"]
