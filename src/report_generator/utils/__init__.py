"""
This package provides the building blocks of the experiment report pipeline.

The modules within this package handle specific concerns such as:
- `constants`: Key separators, analysis defaults, layout constants and chart colours.
- `errors`: The error taxonomy shared by every stage of the pipeline.
- `data_model`: Typed models for the experiment JSON and its ingestion.
- `aggregation`: Impact rankings, scenario partitions and variable averages.
- `insights`: Prompt construction, LLM invocation and response parsing.
- `charts`: Off-screen rendering of the report charts to PNG.
- `document`: Paginated PDF composition.
"""
