"""
Built-in name corpus, scoped by name role.

Used as the fallback when the store's frequency table has no row for a
token, and as the seed data for that table.
"""

from __future__ import annotations

from typing import List

from ..models import NameFrequency, NameRole


MALE_FIRST_NAMES = frozenset(n.lower() for n in """
    Raj Ravi Kumar Amit Anil Arjun Ashok Bharat Deepak Gaurav Harsh Ishaan Jay Karan
    Lokesh Manish Nikhil Om Pankaj Rahul Rohit Sachin Tarun Uday Varun Yash Abhishek
    Aditya Akshay Aman Ankit Anshul Arun Ayush Chirag Dinesh Gopal Himanshu Jatin Kiran
    Manoj Naveen Piyush Prateek Sandeep Saurabh Shivam Siddharth Vikash Vishal Yogesh
    Aarav Advik Aryan Dhruv Kabir Krishna Mohit Rohan Shaurya Vihaan Vivaan Ram Shyam
    Vishnu Shiva Ganesh Hanuman Lakshman Suresh Ramesh Mahesh Rajesh Mukesh Rakesh
    Vijay Sanjay Ajay Prakash Sunil Vinod Rajendra Mohan Gopinath Srinivas Venkatesh
""".split())

FEMALE_FIRST_NAMES = frozenset(n.lower() for n in """
    Priya Anita Kavita Sunita Rekha Meera Sita Radha Lakshmi Saraswati Durga Parvati
    Ganga Yamuna Kali Annapurna Aditi Ananya Anjali Aparna Arpita Asha Bhavna Chitra
    Deepika Divya Ekta Garima Geeta Hema Isha Jyoti Kajal Kanika Kavya Kriti Madhuri
    Manisha Megha Neha Nikita Nisha Pooja Preeti Rakhi Rashmi Riya Ruchi Sakshi Sanjana
    Shreya Simran Sneha Sonal Sonia Swati Tanvi Tanya Trisha Urvashi Vaishali Vidya
    Yamini Zara Aaradhya Aanya Anika Avni Diya Ishani Kiara Mira Navya Saanvi Sara
    Shanaya Tara Vanya Aadhya Advika Anvi Arya Sandhya Usha Kamala Savitri Shanti
""".split())

SURNAMES = frozenset(n.lower() for n in """
    Singh Kumar Sharma Verma Gupta Yadav Patel Khan Shah Agarwal Jain Mehta Reddy Rao
    Naidu Iyer Iyengar Menon Nair Pillai Nambiar Krishnan Raman Subramanian Venkatesh
    Srinivasan Raghavan Gopal Krishna Rama Tiwari Pandey Mishra Dwivedi Trivedi
    Chaturvedi Shukla Vyas Bhatt Joshi Desai Gandhi Modi Amin Sheth Parikh Bhatia
    Kapoor Malhotra Khanna Chopra Bedi Sethi Ahuja Bajaj Jindal Goel Garg Khandelwal
    Bansal Mittal Oberoi Sodhi Dhillon Gill Sandhu Brar Sidhu Mann Cheema Saini Aulakh
    Grewal Tewari Sapkota Karki Thapa Gurung Tamang Lama Rai Magar Chhetri Basnet
    Khadka Bhandari Acharya Bhattarai Dahal Koirala Poudel Adhikari Devi Das Lal Bai
""".split())

PARENTAL_NAMES = frozenset(n.lower() for n in """
    Ram Shyam Krishna Vishnu Shiva Ganesh Hanuman Lakshman Bharat Shatrughan Mohan Sohan
    Rohan Gopal Madan Chandan Nandan Arjun Bhima Nakul Sahadev Narayan Vasudev Devaki
    Yashoda Nanda Kunti Madri Gandhari Draupadi Subhadra Uttara Drupada Balram Sudama
""".split())

HONORIFICS = frozenset(["shri", "shrimati", "kumari", "sri", "smt", "mr", "mrs", "ms", "dr", "prof"])

FIRST_NAMES = MALE_FIRST_NAMES | FEMALE_FIRST_NAMES
ALL_NAMES = FIRST_NAMES | SURNAMES | PARENTAL_NAMES

# Parent and guardian names are usually written in full.
ROLE_CORPORA: dict[NameRole, frozenset] = {
    NameRole.FIRST_NAME: FIRST_NAMES,
    NameRole.LAST_NAME: SURNAMES,
    NameRole.FATHER_NAME: ALL_NAMES,
    NameRole.MOTHER_NAME: ALL_NAMES,
    NameRole.GUARDIAN_NAME: ALL_NAMES,
}


def corpus_for(role: NameRole) -> frozenset:
    return ROLE_CORPORA[NameRole(role)]


def seed_rows(frequency_score: float, region: str = "all", language: str = "en") -> List[NameFrequency]:
    """One frequency row per (token, role) pair of the built-in corpus."""
    rows = []
    for role, corpus in ROLE_CORPORA.items():
        for token in sorted(corpus):
            rows.append(NameFrequency(
                name_token=token,
                name_type=role.value,
                frequency_score=frequency_score,
                region=region,
                language=language,
            ))
    return rows
