"""
Header-to-column mapping tables for the intake questionnaires.

Each program collects intake through its own Google Form, so the exported
spreadsheet headers differ. Headers are matched literally; anything not in
the table for the chosen program is ignored by the mapper.

Adding a question: add the exact header text here and, if the target is a new
column, add it to STUDENT_COLUMNS in schema.py. validate_column_mappings()
runs at app startup and rejects targets the students table does not have.
"""

from typing import Dict

from roster.schema import Program, STUDENT_COLUMNS

# Read by the importer but never written to the students table.
IMPORT_ONLY_FIELDS = {"is_returning", "placement_decision"}

ESOL_COLUMN_MAPPING: Dict[str, str] = {
    # Basic info
    "First Name": "legal_first_name",
    "Last Name": "legal_last_name",
    "Name I prefer to be called": "preferred_name",
    "Email": "email",
    "Phone": "phone",
    # Address
    "Street Address (including Apt #)": "address_street",
    "City": "address_city",
    "State": "address_state",
    "Zip Code": "address_zip",
    "Lamplight ESOL programs are open to people who live in Arlington, Medford, Somerville, "
    "Cambridge, Waltham or people who work in Arlington. Priority is given to people who live "
    "or work in Arlington.": "residence",
    # Demographics
    "Age": "age",
    "Gender:": "gender",
    "Ethnicity: Are you Hispanic or Latino/Latina?": "ethnicity_hispanic_latino",
    "Race: (check all that apply)": "race",
    "Country of Birth": "country_of_birth",
    "Native Language": "native_language",
    "Language spoken at home": "language_spoken_at_home",
    # Education & employment
    "Education: What is the highest level of schooling that you have completed?": "highest_education",
    "What is your current employment status: ": "employment",
    "Do you have access to a computer?": "computer_access",
    # Program info
    "Where did you hear about Lamplight Women's Literacy Center? Who referred you to this program?": "referral",
    # Financial info
    "Is your household income below the limit for the number of people in your family? "
    "(Instructions: Add together the total income of all people living in your home. Next, "
    "find the column for the number of people in your family. Is your household income lower "
    "than that number?)": "household_income",
    # Returning students
    "Student Code": "student_code",
    "is_returning": "is_returning",
}

HCP_COLUMN_MAPPING: Dict[str, str] = {
    "First Name": "legal_first_name",
    "Last Name": "legal_last_name",
    "Preferred Name": "preferred_name",
    "Email": "email",
    "Phone Number": "phone",
    "Street Address": "address_street",
    "City": "address_city",
    "State": "address_state",
    "Zip Code": "address_zip",
    "Age": "age",
    "Gender": "gender",
    "Are you Hispanic or Latino/Latina?": "ethnicity_hispanic_latino",
    "Race (check all that apply)": "race",
    "Country of Birth": "country_of_birth",
    "Native Language": "native_language",
    "What is the highest level of education you have completed?": "highest_education",
    "Current employment status": "employment",
    "Do you have access to a computer?": "computer_access",
    "How did you hear about the Healthcare Career Pathways program?": "referral",
    "Do you currently hold a healthcare certification (CNA, HHA, PCA)?": "healthcare_certification",
    "Have you taken the TEAS exam before?": "teas_taken_before",
    "Placement Decision": "placement_decision",
    "Student Code": "student_code",
    "is_returning": "is_returning",
}

COLUMN_MAPPINGS: Dict[Program, Dict[str, str]] = {
    Program.ESOL: ESOL_COLUMN_MAPPING,
    Program.HCP: HCP_COLUMN_MAPPING,
}


def get_column_mapping(program: Program) -> Dict[str, str]:
    """Return the header table for a program."""
    return COLUMN_MAPPINGS[Program(program)]


def validate_column_mappings() -> None:
    """
    Check every mapping table against the students table columns.

    Raises:
        ValueError: if a table maps a header to an unknown field, or maps two
            headers onto the same field.
    """
    allowed = STUDENT_COLUMNS | IMPORT_ONLY_FIELDS
    problems = []
    for program, mapping in COLUMN_MAPPINGS.items():
        seen: Dict[str, str] = {}
        for header, field in mapping.items():
            if field not in allowed:
                problems.append(f"{program.value}: '{header}' maps to unknown field '{field}'")
            if field in seen:
                problems.append(f"{program.value}: '{header}' and '{seen[field]}' both map to '{field}'")
            seen[field] = header
    if problems:
        raise ValueError("Invalid CSV column mapping: " + "; ".join(problems))
