# backend/ranker/adapters/fixtures.py
"""
Embedded sample extractions in the IDP output shape: one job description and
five resumes. Served by FixtureIdpAdapter and used as the development fallback
when the real provider fails.
"""

from __future__ import annotations

from typing import Any, Dict, List

FIXTURE_JD: Dict[str, Any] = {
    "Job_Title": "Business Development Manager",
    "Employment_Type": "Full-time",
    "Travel": "Not Found",
    "Summary": (
        "Drive regional growth for a contract research organisation by selling complex life "
        "science services to pharmaceutical, biotech and diagnostics companies while staying "
        "compliant with GLP, GMP and FDA guidelines."
    ),
    "Experience": {
        "Required_Experience": [
            "3+ years sales or business development experience representing complex life science "
            "products and/or services to pharmaceutical, biotech and diagnostics companies",
        ],
    },
    "Qualifications": {
        "Qualifications_Required": [
            "At least 3 years sales or business development experience in life sciences",
        ],
        "Qualifications_Preferred": [],
    },
    "Skills": {"Skills": ["Microsoft Excel", "Word", "Outlook", "Business Development", "Negotiation"]},
    "Education": {
        "Education": "BA/BS in science or business related field, plus 4 years commercial life science experience",
    },
    "Responsibilities": {
        "Responsibility_Duties": [
            "Achieve regional sales targets on a quarterly basis in line with the annual corporate sales plan",
            "Prepare proposals together with colleagues in operations",
            "Negotiate complex business arrangements",
        ],
    },
    "Compliance": {"Compliance_Regulatory": ["CLIA", "CAP", "ISO 9001"]},
}


def _resume(
    name: str,
    email: str,
    city: str,
    years: str,
    skills: List[str],
    tools: List[str],
    company: str,
    title: str,
    dates: str,
    duties: List[str],
    degree: str,
    school: str,
    grad_year: str,
) -> Dict[str, Any]:
    return {
        "Full_Name": name,
        "email": email,
        "phone": "555-0100",
        "city": city,
        "country": "United States",
        "skills_core": skills,
        "total_years_experience": years,
        "tools_platforms": tools,
        "certifications_licenses": "not found",
        "Work_Experience": [
            {"Company": company, "Job_Title": title, "Employment_Dates": dates, "Responsibilities": duties},
        ],
        "Education": [{"Degree": degree, "Institution": school, "Graduation_Year": grad_year}],
    }


FIXTURE_RESUMES: List[Dict[str, Any]] = [
    _resume(
        "Sarah Martinez", "sarah.martinez@email.com", "Boston", "6",
        ["Business Development", "Sales Strategy", "Life Sciences", "Pharmaceutical Sales", "Negotiation"],
        ["Microsoft Excel", "PowerPoint", "Salesforce"],
        "BioTech Solutions", "Business Development Manager", "2020 - present",
        ["Led business development for life science products and services",
         "Generated $5M+ in annual revenue through strategic partnerships"],
        "Master of Science in Biology", "Harvard University", "2020",
    ),
    _resume(
        "Michael Chen", "michael.chen@email.com", "New York", "8",
        ["Sales Management", "Key Account Management", "Business Development", "Team Leadership"],
        ["Microsoft Office", "Power BI"],
        "PharmaCorp International", "Senior Sales Manager", "2018 - present",
        ["Managed key accounts in pharmaceutical and biotech sectors",
         "Led a sales team of 12 professionals across multiple regions"],
        "Bachelor of Science in Chemistry", "MIT", "2018",
    ),
    _resume(
        "Emily Rodriguez", "emily.rodriguez@email.com", "Philadelphia", "5",
        ["Strategic Partnerships", "Healthcare Management", "Proposal Development", "Negotiation"],
        ["Microsoft Office", "CRM Systems"],
        "MedPartners Global", "Business Development Specialist", "2021 - present",
        ["Developed strategic partnerships in healthcare and life sciences",
         "Generated $3M+ in new business opportunities"],
        "Master of Business Administration", "Wharton School", "2021",
    ),
    _resume(
        "David Thompson", "david.thompson@email.com", "Chicago", "12",
        ["Business Development", "Healthcare Industry", "Executive Management", "Revenue Growth"],
        ["Microsoft Office", "Financial Modeling"],
        "LifeSciences Corporation", "Director of Business Development", "2017 - present",
        ["Led a business development team of 20+ professionals",
         "Generated $50M+ in annual revenue"],
        "Master of Science in Biotechnology", "Northwestern University", "2017",
    ),
    _resume(
        "Paul Sung", "paul.sung@email.com", "San Diego", "2",
        ["Drug Discovery", "Process Development", "HPLC", "Technical Writing"],
        ["Excel", "PowerPoint"],
        "Polypeptide Laboratories", "Process Development Scientist", "2023 - present",
        ["Wrote proposals and led projects on synthesis of large-scale polypeptides"],
        "Ph.D. in Organic Chemistry", "University of Pennsylvania", "2019",
    ),
]


__all__ = ["FIXTURE_JD", "FIXTURE_RESUMES"]
