"""
Prompt building blocks for the cleaning and extraction calls.
"""
import json
from typing import Iterable, List, Optional

from nlp.context import PatientContext, PreviousConsultation

PUERICULTURA = 'puericultura'
URGENCIA_EMERGENCIA = 'urgencia_emergencia'
CONSULTA_ROTINA = 'consulta_rotina'

CONSULTATION_TYPE_CHOICES = [
    (PUERICULTURA, 'Puericultura'),
    (URGENCIA_EMERGENCIA, 'Urgência/Emergência'),
    (CONSULTA_ROTINA, 'Consulta de Rotina'),
]

PUERICULTURA_SUBTYPE_CHOICES = [
    ('prenatal', 'Consulta Pré-Natal'),
    ('primeira_rn', 'Primeira Consulta do RN (7-10 dias)'),
    ('mensal_1', '1º Mês de Vida'),
    ('mensal_2', '2º Mês de Vida'),
    ('mensal_3', '3º Mês de Vida'),
    ('mensal_4', '4º Mês de Vida'),
    ('mensal_5', '5º Mês de Vida'),
    ('mensal_6', '6º Mês de Vida'),
    ('rotina_7_12', 'Rotina 7-12 Meses'),
]

SUBTYPE_FOCUS = {
    'prenatal': 'orientações aos pais, histórico gestacional, planejamento do aleitamento',
    'primeira_rn': 'dados do nascimento, triagens neonatais, icterícia, coto umbilical, aleitamento',
    'mensal_1': 'aleitamento, sono, ganho de peso',
    'mensal_2': 'crescimento, vacinas, sorriso social',
    'mensal_3': 'interação social, alimentação',
    'mensal_4': 'sustentação cefálica, comunicação',
    'mensal_5': 'preparo para introdução alimentar, dentição',
    'mensal_6': 'sentar sem apoio, alimentação complementar',
    'rotina_7_12': 'marcos motores e de linguagem, alimentação da família, vacinas',
}

TYPE_GUIDANCE = {
    PUERICULTURA: (
        "TIPO DE CONSULTA: Puericultura (acompanhamento do crescimento e desenvolvimento).\n"
        "- Priorize medidas antropométricas (peso, estatura, perímetro cefálico) e sua evolução.\n"
        "- Registre marcos do desenvolvimento neuropsicomotor em development_notes.\n"
        "- Detalhe alimentação (aleitamento, fórmula, introdução alimentar), sono e vacinação.\n"
        "- Histórico pré-natal e perinatal vai em prenatal_perinatal_history."
    ),
    URGENCIA_EMERGENCIA: (
        "TIPO DE CONSULTA: Urgência/Emergência (quadro agudo).\n"
        "- Reconstrua a linha do tempo dos sintomas com início, duração e evolução precisos.\n"
        "- Registre sinais de alarme (febre persistente, desidratação, desconforto respiratório, "
        "letargia, convulsão) presentes ou negados.\n"
        "- Inclua sinais vitais e achados relevantes do exame físico.\n"
        "- Conduta deve deixar claro critérios de retorno e de internação."
    ),
    CONSULTA_ROTINA: (
        "TIPO DE CONSULTA: Consulta de rotina.\n"
        "- Faça revisão por sistemas com o que foi relatado.\n"
        "- Registre queixas secundárias e orientações gerais.\n"
        "- Atualize medicações em uso e alergias mencionadas."
    ),
}

CLEANING_SYSTEM_PROMPT = (
    "Você é um assistente especializado em processar transcrições de consultas médicas pediátricas. "
    "Responda sempre com um objeto JSON."
)

CLEANING_INSTRUCTIONS = """TAREFA: Limpe a transcrição abaixo.

REMOVER: ruídos e sons não verbais, conversas paralelas sem relação com a consulta, hesitações,
preenchimentos verbais, saudações e despedidas genéricas.

PRESERVAR: todo conteúdo clínico, termos técnicos exatos, medidas e valores numéricos, nomes de
medicamentos e doses, sintomas, achados de exame, hipóteses diagnósticas, orientações. Mantenha as
marcações de falante ([Speaker N]) quando existirem.

MELHORAR: pontuação e erros gramaticais óbvios, sem mudar o sentido.

IMPORTANTE: o contexto do paciente serve apenas para desambiguar nomes e termos. NUNCA use o contexto
para acrescentar fatos clínicos que não estejam na transcrição.

Retorne JSON no formato: {"cleaned_text": "texto limpo"}"""

EXTRACTION_SYSTEM_PROMPT = (
    "Você é um assistente médico especializado em pediatria que organiza documentação clínica. "
    "Responda apenas com um objeto JSON válido, sem markdown."
)

EXTRACTION_SCHEMA = {
    "chief_complaint": "texto ou null",
    "hma": "história da moléstia atual, texto ou null",
    "history": "informações complementares de contexto, texto ou null",
    "family_history": "texto ou null",
    "prenatal_perinatal_history": "texto ou null",
    "physical_exam": "texto ou null",
    "development_notes": "texto ou null",
    "weight_kg": "número ou null",
    "height_cm": "número ou null",
    "head_circumference_cm": "número ou null",
    "weight_source": "audio | profile | null",
    "height_source": "audio | profile | null",
    "head_circumference_source": "audio | profile | null",
    "diagnosis": "texto ou null",
    "diagnosis_is_ai_suggestion": "true se o diagnóstico não foi dito pelo médico",
    "conduct": "exames, encaminhamentos, texto ou null",
    "plan": "plano terapêutico com medicações e posologia, texto ou null",
    "notes": "texto ou null",
    "medication_alerts": "interações ou alergias relevantes, texto ou null",
    "patient_updates": {
        "allergies": "somente se mencionado",
        "current_medications": "somente se mencionado",
        "blood_type": "somente se mencionado",
        "medical_history": "somente se mencionado",
    },
    "speaker_analysis": {
        "mother_statements": ["falas do responsável"],
        "doctor_statements": ["falas do médico"],
    },
    "quality_score": "0 a 10, completude da documentação",
}

EXTRACTION_RULES = """REGRAS:
- Campo sem informação na transcrição: null.
- Números somente como valor numérico.
- Medidas ditas na consulta têm source "audio"; medidas copiadas do cadastro têm source "profile".
- Se você sugerir um diagnóstico que o médico não disse, marque diagnosis_is_ai_suggestion=true.
- patient_updates só deve conter dados novos citados na consulta; um humano confirmará antes de salvar.
- NÃO invente informações."""


def format_patient_context(context: Optional[PatientContext]) -> str:
    if context is None:
        return ""

    lines = []
    if context.name:
        lines.append(f"- Nome: {context.name}")
    if context.age_years is not None:
        lines.append(f"- Idade: {context.age_years} anos")
    if context.weight_kg:
        lines.append(f"- Peso cadastrado: {context.weight_kg} kg")
    if context.height_cm:
        lines.append(f"- Altura cadastrada: {context.height_cm} cm")
    if context.head_circumference_cm:
        lines.append(f"- Perímetro cefálico cadastrado: {context.head_circumference_cm} cm")
    if context.blood_type:
        lines.append(f"- Tipo sanguíneo: {context.blood_type}")
    if context.allergies:
        lines.append(f"- Alergias conhecidas: {context.allergies}")
    if context.medical_history:
        lines.append(f"- Histórico médico: {context.medical_history}")
    if context.current_medications:
        lines.append(f"- Medicações em uso: {context.current_medications}")

    if not lines:
        return ""
    return "CONTEXTO DO PACIENTE (referência, não é fonte de fatos clínicos):\n" + "\n".join(lines)


def consultation_type_guidance(consultation_type: Optional[str], subtype: Optional[str] = None) -> str:
    guidance = TYPE_GUIDANCE.get(consultation_type or CONSULTA_ROTINA, TYPE_GUIDANCE[CONSULTA_ROTINA])
    if consultation_type == PUERICULTURA and subtype in SUBTYPE_FOCUS:
        label = dict(PUERICULTURA_SUBTYPE_CHOICES)[subtype]
        guidance += f"\n- Etapa: {label}. Foco: {SUBTYPE_FOCUS[subtype]}."
    return guidance


def format_previous_consultations(previous: Iterable[PreviousConsultation], limit: int) -> str:
    """Most recent first; the first one is flagged as the latest visit."""
    items: List[PreviousConsultation] = list(previous)[:limit]
    if not items:
        return ""

    blocks = []
    for position, item in enumerate(items):
        when = item.consultation_date.strftime('%d/%m/%Y') if item.consultation_date else 'data desconhecida'
        header = f"Consulta de {when}"
        if position == 0:
            header += " (MAIS RECENTE)"
        details = [
            f"  Queixa: {item.chief_complaint}" if item.chief_complaint else None,
            f"  Diagnóstico: {item.diagnosis}" if item.diagnosis else None,
            f"  Conduta: {item.conduct}" if item.conduct else None,
            f"  Plano: {item.plan}" if item.plan else None,
        ]
        blocks.append("\n".join([header] + [d for d in details if d]))

    return "CONSULTAS ANTERIORES (para continuidade do cuidado):\n" + "\n\n".join(blocks)


def build_cleaning_messages(raw_text: str, context: Optional[PatientContext]) -> List[dict]:
    parts = [CLEANING_INSTRUCTIONS]
    patient_block = format_patient_context(context)
    if patient_block:
        parts.append(patient_block)
    parts.append(f"TRANSCRIÇÃO ORIGINAL:\n{raw_text}")
    return [
        {"role": "system", "content": CLEANING_SYSTEM_PROMPT},
        {"role": "user", "content": "\n\n".join(parts)},
    ]


def build_extraction_messages(cleaned_text: str, context: Optional[PatientContext],
                              consultation_type: Optional[str], subtype: Optional[str],
                              previous: Iterable[PreviousConsultation], previous_limit: int) -> List[dict]:
    parts = []
    patient_block = format_patient_context(context)
    if patient_block:
        parts.append(patient_block)
    parts.append(consultation_type_guidance(consultation_type, subtype))
    history_block = format_previous_consultations(previous, previous_limit)
    if history_block:
        parts.append(history_block)
    parts.append(EXTRACTION_RULES)
    parts.append("FORMATO DE SAÍDA:\n" + json.dumps(EXTRACTION_SCHEMA, ensure_ascii=False, indent=2))
    parts.append(f"TRANSCRIÇÃO DA CONSULTA:\n{cleaned_text}")
    return [
        {"role": "system", "content": EXTRACTION_SYSTEM_PROMPT},
        {"role": "user", "content": "\n\n".join(parts)},
    ]
