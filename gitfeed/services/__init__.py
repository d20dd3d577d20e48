# Pipeline services: retry, parsing, labels, linking, cache, orchestration
