"""
Fixed output schemas for structured completions.

Written in the OpenAPI subset that structured-output services accept
(upper-case type names). Chart `data` is requested as a JSON *string*
holding a header-first 2-D table because nested heterogeneous arrays are
not expressible in that subset.
"""

ANALYSIS_RESULT_SCHEMA = {
    "type": "OBJECT",
    "properties": {
        "findings": {
            "type": "ARRAY",
            "description": "Findings of the analysis. Each finding has a textual insight and, optionally, a chart that supports it.",
            "items": {
                "type": "OBJECT",
                "properties": {
                    "insight": {
                        "type": "STRING",
                        "description": "A concise, actionable description of the finding: what the chart shows and what it means for this data."
                    },
                    "plot": {
                        "type": "OBJECT",
                        "description": "Chart specification. Omit when the finding cannot be visualized.",
                        "properties": {
                            "chart_type": {"type": "STRING", "enum": ["bar", "line", "scatter", "pie"], "description": "Chart type."},
                            "title": {"type": "STRING", "description": "Descriptive chart title."},
                            "description": {"type": "STRING", "description": "Short description of what the chart represents."},
                            "data": {
                                "type": "STRING",
                                "description": "A JSON string holding an array of arrays. The first row MUST be the header. Example: '[[\"Month\",\"Sales\"],[\"Jan\",150],[\"Feb\",200]]'"
                            },
                            "data_keys": {
                                "type": "OBJECT",
                                "description": "Mapping of chart axes to data keys. Keys must match the header row of 'data'.",
                                "properties": {
                                    "x": {"type": "STRING", "description": "Key for the X axis (or labels)."},
                                    "y": {"type": "ARRAY", "description": "Key(s) for the Y axis values. Always an array.", "items": {"type": "STRING"}},
                                    "value": {"type": "STRING", "description": "Key for values (pie charts)."},
                                    "name": {"type": "STRING", "description": "Key for names/categories (pie charts)."}
                                }
                            }
                        },
                        "required": ["chart_type", "title", "data", "data_keys"]
                    }
                },
                "required": ["insight"]
            }
        },
        "suggested_followups": {
            "type": "ARRAY",
            "description": "3-5 follow-up questions the user could ask to dig deeper.",
            "items": {"type": "STRING"}
        }
    },
    "required": ["findings", "suggested_followups"]
}

PRE_ANALYSIS_RESULT_SCHEMA = {
    "type": "OBJECT",
    "properties": {
        "summary": {
            "type": "STRING",
            "description": "A concise 1-2 sentence summary of what the dataset contains."
        },
        "suggestedQuestions": {
            "type": "ARRAY",
            "description": "3-4 interesting starter questions answerable from the data profile.",
            "items": {"type": "STRING"}
        }
    },
    "required": ["summary", "suggestedQuestions"]
}

SUMMARY_SCHEMA = {
    "type": "OBJECT",
    "properties": {
        "summary": {
            "type": "STRING",
            "description": "Compressed summary of the earlier conversation, keeping concrete figures and the thread of inquiry."
        }
    },
    "required": ["summary"]
}
