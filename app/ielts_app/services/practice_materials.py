"""Built-in IELTS practice materials and answer-key derivation."""
from __future__ import annotations

import random
from typing import Any, Dict, List

from .errors import InvalidInput, RecordNotFound

WRITING_TASKS: Dict[str, List[Dict[str, Any]]] = {
    'task1': [
        {
            'id': 'task1-1',
            'title': 'Population Growth Chart',
            'prompt': (
                'The chart below shows the population growth in four different countries '
                'between 1950 and 2020.\n\nSummarise the information by selecting and reporting '
                'the main features, and make comparisons where relevant.\n\nWrite at least 150 words.'
            ),
            'image_description': 'Line chart of population growth for USA, China, India and Brazil, 1950-2020',
            'time_limit': 20,
            'word_limit': 150,
        },
        {
            'id': 'task1-2',
            'title': 'University Spending',
            'prompt': (
                'The pie charts below show the percentage of university spending on different '
                'categories in 2010 and 2020.\n\nSummarise the information by selecting and reporting '
                'the main features, and make comparisons where relevant.\n\nWrite at least 150 words.'
            ),
            'image_description': 'Two pie charts comparing university spending categories in 2010 and 2020',
            'time_limit': 20,
            'word_limit': 150,
        },
    ],
    'task2': [
        {
            'id': 'task2-1',
            'title': 'Education vs Work Experience',
            'prompt': (
                'Some people believe that studying at university or college is the best route to a '
                'successful career, while others believe that it is better to get a job straight after '
                'school.\n\nDiscuss both views and give your opinion.\n\nWrite at least 250 words.'
            ),
            'time_limit': 40,
            'word_limit': 250,
            'type': 'discuss_both_views',
        },
        {
            'id': 'task2-2',
            'title': 'Technology and Social Interaction',
            'prompt': (
                'In many countries, people are spending more time on digital devices and less time on '
                'face-to-face social interaction.\n\nDo you think this is a positive or negative '
                'development?\n\nWrite at least 250 words.'
            ),
            'time_limit': 40,
            'word_limit': 250,
            'type': 'opinion',
        },
    ],
}

SPEAKING_QUESTIONS: Dict[int, List[Dict[str, Any]]] = {
    1: [
        {
            'id': 'part1-work',
            'topic': 'Work or Study',
            'questions': [
                'Do you work or are you a student?',
                'What do you enjoy most about your work or studies?',
                'Would you like to change your job or course in the future?',
            ],
        },
        {
            'id': 'part1-hometown',
            'topic': 'Hometown',
            'questions': [
                'Where is your hometown?',
                'What do you like about living there?',
                'How has your hometown changed in recent years?',
            ],
        },
    ],
    2: [
        {
            'id': 'part2-skill',
            'topic': 'A skill you learned',
            'questions': [
                'Describe a skill that you learned as an adult. You should say: what the skill is, '
                'how you learned it, how long it took, and explain why you decided to learn it.',
            ],
            'preparation_time': 60,
            'speaking_time': 120,
        },
    ],
    3: [
        {
            'id': 'part3-learning',
            'topic': 'Learning new skills',
            'questions': [
                'Why do some adults find it difficult to learn new skills?',
                'Should employers pay for their staff to learn new skills?',
                'How might technology change the way people learn in the future?',
            ],
        },
    ],
}

READING_PASSAGES: List[Dict[str, Any]] = [
    {
        'id': 'reading-1',
        'title': 'The History of Glass',
        'passage': (
            'Glass has been produced for at least 4,500 years. Early glassmakers in Mesopotamia '
            'formed beads and small vessels by winding molten glass around a core of clay. The '
            'invention of glassblowing in the first century BC made glass cheap enough for everyday '
            'use across the Roman Empire. Modern float glass, developed in the 1950s, is made by '
            'pouring molten glass onto a bath of molten tin, which produces a perfectly flat surface.'
        ),
        'questions': [
            {
                'id': 1,
                'type': 'multiple_choice',
                'question': 'How did the earliest glassmakers shape their products?',
                'options': ['By blowing air into molten glass', 'By pouring glass onto tin', 'By winding glass around clay'],
                'correct': 2,
            },
            {
                'id': 2,
                'type': 'true_false_not_given',
                'question': 'Glassblowing was invented in Mesopotamia.',
                'correct': 'NOT GIVEN',
            },
            {
                'id': 3,
                'type': 'true_false_not_given',
                'question': 'Glassblowing made glass more affordable.',
                'correct': 'TRUE',
            },
            {
                'id': 4,
                'type': 'fill_blank',
                'question': 'Float glass is produced on a bath of molten ______.',
                'correct': 'tin',
            },
            {
                'id': 5,
                'type': 'multiple_choice',
                'question': 'When was float glass developed?',
                'options': ['In the first century BC', 'In the 1950s', 'About 4,500 years ago'],
                'correct': 1,
            },
        ],
    },
]

LISTENING_TESTS: List[Dict[str, Any]] = [
    {
        'id': 'listening-1',
        'title': 'Joining a Sports Centre',
        'transcript': (
            'Receptionist: Good morning, Riverside Sports Centre. Caller: Hi, I would like to join. '
            'Receptionist: Our standard membership is 120 pounds a year, and classes run for 4-6 weeks. '
            'You can swim at any time, but the gym closes at nine on Sundays.'
        ),
        'questions': [
            {
                'id': 1,
                'type': 'multiple_choice',
                'question': 'What is the name of the sports centre?',
                'options': ['Riverside', 'Lakeside', 'Hillside'],
                'correct': 0,
            },
            {
                'id': 2,
                'type': 'fill_blank',
                'question': 'Standard membership costs ______ pounds a year.',
                'correct': '120',
            },
            {
                'id': 3,
                'type': 'fill_blank',
                'question': 'Classes run for ______ weeks.',
                'correct': '4-6',
            },
            {
                'id': 4,
                'type': 'multiple_choice',
                'question': 'When does the gym close early?',
                'options': ['Saturdays', 'Sundays', 'Mondays'],
                'correct': 1,
            },
            {
                'id': 5,
                'type': 'true_false_not_given',
                'question': 'Members can swim at any time.',
                'correct': 'TRUE',
            },
        ],
    },
]


def get_random_writing_task(task_type: str) -> Dict[str, Any]:
    tasks = WRITING_TASKS.get(task_type)
    if not tasks:
        raise InvalidInput(f'Unknown writing task type: {task_type}')
    return random.choice(tasks)


def get_random_speaking_questions(part: int) -> Dict[str, Any]:
    sets = SPEAKING_QUESTIONS.get(part)
    if not sets:
        raise InvalidInput(f'Unknown speaking part: {part}')
    return random.choice(sets)


def get_random_reading_passage() -> Dict[str, Any]:
    return random.choice(READING_PASSAGES)


def get_random_listening_test() -> Dict[str, Any]:
    return random.choice(LISTENING_TESTS)


def find_material(skill: str, material_id: str) -> Dict[str, Any]:
    """Look up a reading passage or listening test by id."""
    bank = READING_PASSAGES if skill == 'reading' else LISTENING_TESTS
    for material in bank:
        if material['id'] == material_id:
            return material
    raise RecordNotFound(f'No {skill} material with id {material_id}')


def correct_answers_for(material: Dict[str, Any], skill: str) -> Dict[str, str]:
    """Build the answer key for a material's questions.

    Reading multiple-choice keys hold the option index; listening
    multiple-choice keys hold the option text.
    """
    key: Dict[str, str] = {}
    for question in material.get('questions', []):
        correct = question['correct']
        if question.get('type') == 'multiple_choice' and skill == 'listening':
            key[str(question['id'])] = question['options'][correct]
        else:
            key[str(question['id'])] = str(correct)
    return key


def public_view(material: Dict[str, Any]) -> Dict[str, Any]:
    """Copy of a material with answers removed, for sending to test takers."""
    view = {k: v for k, v in material.items() if k != 'questions'}
    if 'questions' in material:
        view['questions'] = [
            {k: v for k, v in question.items() if k != 'correct'} if isinstance(question, dict) else question
            for question in material['questions']
        ]
    return view
