from gateway.metrics import counter_value, observe_histogram, record_completion, render_metrics


def test_record_completion_counts_runs_and_tokens() -> None:
    labels = {"model": "metrics-test", "provider": "stub", "stream": "false"}
    before = counter_value("agw_completions_total", {**labels, "outcome": "success"})
    record_completion(
        model="metrics-test",
        provider="stub",
        streaming=False,
        outcome="success",
        latency_s=0.02,
        prompt_tokens=4,
        completion_tokens=0,
    )
    assert counter_value("agw_completions_total", {**labels, "outcome": "success"}) == before + 1
    assert counter_value("agw_tokens_total", {**labels, "direction": "prompt"}) >= 4
    assert counter_value("agw_tokens_total", {**labels, "direction": "completion"}) == 0


def test_histogram_buckets_are_cumulative() -> None:
    name = "agw_test_bucket_seconds"
    observe_histogram(name, {"case": "cumulative"}, 0.07)
    rendered = render_metrics()
    assert f'{name}_bucket{{case="cumulative",le="0.05"}} 0' in rendered
    assert f'{name}_bucket{{case="cumulative",le="0.1"}} 1' in rendered
    assert f'{name}_bucket{{case="cumulative",le="60.0"}} 1' in rendered
    assert f'{name}_bucket{{case="cumulative",le="+Inf"}} 1' in rendered
    assert f'{name}_count{{case="cumulative"}} 1' in rendered


def test_metrics_endpoint_is_public(client) -> None:
    response = client.get("/metrics")
    assert response.status_code == 200
    assert response.headers["content-type"].startswith("text/plain")
