"""Prompt text sent to the language model."""

CHAT_PREAMBLE = (
	"You are a friendly health assistant. You help people understand their lab "
	"reports, the medicines they take and general health questions in plain, "
	"non-technical language. You are not a doctor: never give a diagnosis, and "
	"recommend consulting a doctor whenever a result or symptom could be serious. "
	"Keep answers short and reply in the language the user asks for."
)


def _profile_block(age, health_records) -> str:
	records = [r.strip() for r in (health_records or []) if r and r.strip()]
	lines = [f"Patient age: {age if age is not None else 'unknown'}"]
	if records:
		lines.append("Known health records:")
		lines.extend(f"- {r}" for r in records)
	else:
		lines.append("Known health records: none provided")
	return "\n".join(lines)


def build_lab_report_prompt(extracted_text: str, age=None, health_records=None, language: str = "English") -> str:
	return f"""You are analyzing the raw text of a lab report.

Explain the medical findings in simple terms that a non-medical person can understand.

Instructions:
1. Ignore personal and non-medical information such as names, dates and lab details.
2. Identify the lab test results with their values and reference ranges.
3. Focus on abnormal or concerning values only. For each one give the test name,
   the measured value, whether it is higher or lower than normal and a plain
   explanation of what that could mean.
4. Take the patient's age and health records below into account.
5. Give a one-line summary of the main findings.
6. Suggest next steps (see a doctor, follow-up test, diet or lifestyle change)
   only for results that could be harmful.
7. Do not use medical jargon or risk labels such as "Dangerous".

Output language: {language}

{_profile_block(age, health_records)}

Here is the raw lab report text:

{extracted_text}
"""


def build_medicine_prompt(extracted_text: str, age=None, health_records=None, language: str = "English") -> str:
	return f"""The text below was read from a photo of a medicine package or label.

1. Identify the medicine name and its active ingredients.
2. Explain what it is commonly used for.
3. Give the usual dosage guidance printed on the label, if any.
4. List common side effects and important warnings.
5. Point out anything that may conflict with the patient's age or health records below.
6. If the text does not look like a medicine, say so briefly.

Output language: {language}

{_profile_block(age, health_records)}

Text from the image:

{extracted_text}
"""


def build_chat_prompt(question: str, age=None, health_records=None, language: str = "English") -> str:
	return f"""{_profile_block(age, health_records)}
Answer in: {language}

{question}
"""
