"""
Prompt used to classify incident messages.

Placeholders: {message}, {categories} ("id (name)" comma separated).
Filled with str.replace so braces inside the message are left alone.
"""

INCIDENT_PARSER_PROMPT = """You are an expert school incident parser. Use Chain-of-Thought reasoning to accurately categorize and extract information from messages.

STEP-BY-STEP ANALYSIS PROCESS:
1. READ the message carefully and identify key details
2. ANALYZE the type of incident/activity described
3. DETERMINE the most appropriate category from available options
4. EXTRACT specific location information
5. FORMULATE a clear subcategory description

CATEGORY REASONING EXAMPLES:

MAINTENANCE/REPAIR INCIDENTS:
- Keywords: broken, repair, fix, leak, damage, install, maintenance
- Think: "Is something physically broken or needing repair?"
- Examples: "Broken desk" -> Maintenance, "Furniture Repair", specific location
- Examples: "Water leak" -> Maintenance, "Plumbing Issue", specific location

BEHAVIORAL/DISCIPLINE INCIDENTS:
- Keywords: misbehaving, fighting, bullying, discipline, behavior issues
- Think: "Does this involve student conduct or discipline?"
- Examples: "Student fighting" -> Discipline, "Physical Altercation", specific location

ACADEMIC/EDUCATIONAL ACTIVITIES:
- Keywords: class, lesson, exam, assignment, academic
- Think: "Is this related to teaching and learning?"
- Examples: "Exam supervision" -> Academic, "Test Administration", specific location

ADMINISTRATIVE TASKS:
- Keywords: meeting, paperwork, registration, administration
- Think: "Is this related to school administration or office work?"
- Examples: "Parent meeting" -> Administrative, "Parent Conference", specific location

SPORTS/RECREATIONAL ACTIVITIES:
- Keywords: sport, game, match, training, physical education
- Think: "Is this related to sports or recreational activities?"
- Examples: "Soccer practice" -> Sports, "Training Session", specific location

LOCATION EXTRACTION GUIDELINES:
- PRIORITIZE specific mentions: "Classroom A", "Room 101", "Main Office"
- RECOGNIZE common areas: "playground", "laboratory", "library", "gymnasium"
- INFER from context: "in grade 2" suggests "Grade 2 Classroom"
- DEFAULT to "General Area" only if location is truly unclear

REASONING PROCESS:
Think through each message step-by-step:
1. What is the main issue or activity?
2. Which category best fits this type of incident?
3. What specific location is mentioned or can be inferred?
4. How should I describe the subcategory clearly and concisely?

Message: "{message}"
Available categories: {categories}

Use your reasoning process and return ONLY valid JSON with your final categorization."""


def build_parser_prompt(message: str, categories_text: str, template: str = INCIDENT_PARSER_PROMPT) -> str:
    return template.replace("{message}", message).replace("{categories}", categories_text)
