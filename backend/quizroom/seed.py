"""Sample question set used by ``flask db-reset`` and local play."""
from quizroom.services.quiz.questions import QuestionBank

SAMPLE_QUESTIONS = [
    # level 1
    {'level': 1, 'text': 'How many days are in a leap year?',
     'options': ['365', '366', '364', '360'], 'correct_index': 1},
    {'level': 1, 'text': 'Which planet is known as the Red Planet?',
     'options': ['Venus', 'Jupiter', 'Mars', 'Mercury'], 'correct_index': 2},
    {'level': 1, 'text': 'What is the boiling point of water at sea level in Celsius?',
     'options': ['100', '90', '120', '80'], 'correct_index': 0},
    # level 2
    {'level': 2, 'text': 'Which gas do plants absorb from the air for photosynthesis?',
     'options': ['Oxygen', 'Nitrogen', 'Hydrogen', 'Carbon dioxide'], 'correct_index': 3},
    {'level': 2, 'text': 'What is the largest ocean on Earth?',
     'options': ['Atlantic', 'Pacific', 'Indian', 'Arctic'], 'correct_index': 1},
    {'level': 2, 'text': 'How many sides does a hexagon have?',
     'options': ['5', '7', '6', '8'], 'correct_index': 2},
    # level 3
    {'level': 3, 'text': 'Which element has the chemical symbol Fe?',
     'options': ['Iron', 'Lead', 'Fluorine', 'Tin'], 'correct_index': 0},
    {'level': 3, 'text': 'What is the square root of 144?',
     'options': ['14', '12', '11', '16'], 'correct_index': 1},
    {'level': 3, 'text': 'Which organ filters blood in the human body?',
     'options': ['Lungs', 'Heart', 'Stomach', 'Kidneys'], 'correct_index': 3},
    # level 4
    {'level': 4, 'text': 'What is the speed of light in vacuum, roughly, in km/s?',
     'options': ['300,000', '150,000', '30,000', '3,000,000'], 'correct_index': 0},
    {'level': 4, 'text': 'Which layer of the atmosphere contains the ozone layer?',
     'options': ['Troposphere', 'Mesosphere', 'Stratosphere', 'Thermosphere'], 'correct_index': 2},
    {'level': 4, 'text': 'What is the smallest prime number greater than 50?',
     'options': ['51', '53', '57', '59'], 'correct_index': 1},
]


def seed_questions(store) -> int:
    bank = QuestionBank(store)
    for data in SAMPLE_QUESTIONS:
        bank.add(dict(data))
    return len(SAMPLE_QUESTIONS)
