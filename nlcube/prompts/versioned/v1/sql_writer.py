# nlcube/prompts/versioned/v1/sql_writer.py

SQL_WRITER_PROMPT = """
### Instructions:
Your task is to convert a question into a single DuckDB SQL query, given a database schema.
Adhere to these rules:
- **Deliberately go through the question and database schema word by word** to appropriately answer the question
- **Use Table Aliases** to prevent ambiguity. For example, `SELECT table1.col1, table2.col1 FROM table1 JOIN table2 ON table1.id = table2.id`.
- When creating a ratio, always cast the numerator as float
- Use ONLY the tables and columns listed in the schema. Do not invent.
- Write exactly one read-only statement (SELECT / WITH) and end it with a semicolon.

### Input:
Generate a SQL query that answers the question `{QUESTION}`.
This query will run on a database whose schema is represented in this string:
{SCHEMA}

### Response:
Based on your instructions, here is the SQL query I have generated to answer the question `{QUESTION}`:
```sql
"""


def render_sql_prompt(question: str, schema_text: str) -> str:
    return SQL_WRITER_PROMPT.format(QUESTION=question.strip(), SCHEMA=schema_text)
